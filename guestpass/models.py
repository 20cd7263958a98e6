"""SQLAlchemy models for GuestPass."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Admin(Base):
    __tablename__ = "admins"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(32), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    date = Column(DateTime, nullable=True)
    time = Column(String(64), nullable=True)
    venue = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    dress_code = Column(String(255), nullable=True)
    map_embed_url = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Guest(Base):
    __tablename__ = "guests"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    event_access = Column(JSON, nullable=False, default=list)
    allowed_devices = Column(JSON, nullable=False, default=list)
    max_devices_allowed = Column(Integer, nullable=False, default=1)
    number_of_attendees = Column(Integer, nullable=False, default=1)
    token_used_first_time = Column(DateTime, nullable=True)
    token_expires_after_first_use = Column(Boolean, nullable=False, default=False)
    rsvp_submitted = Column(Boolean, nullable=False, default=False)
    rsvp_status = Column(JSON, nullable=True)
    number_of_attendees_per_event = Column(JSON, nullable=True)
    rsvp_submitted_at = Column(DateTime, nullable=True)
    menu_preference = Column(String(16), nullable=True)
    dietary_restrictions = Column(Text, nullable=True)
    additional_info = Column(Text, nullable=True)
    preferences_submitted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    @property
    def device_count(self) -> int:
        return len(self.allowed_devices or [])
