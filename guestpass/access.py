"""Guest token verification and device binding."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from .crud import get_guest_by_token
from .models import Guest
from .utils import EVENT_SLUGS, classify_contact, utcnow

logger = logging.getLogger("uvicorn.error")

ADMIN_PREVIEW_TOKEN = "admin-preview"
ADMIN_PREVIEW_MAX_DEVICES = 999


class AccessError(Exception):
    """Base class for guest access failures."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidContactError(AccessError):
    status_code = 400


class GuestNotFoundError(AccessError):
    status_code = 404


class TokenExpiredError(AccessError):
    status_code = 410


class ContactMismatchError(AccessError):
    status_code = 403


class DeviceLimitError(AccessError):
    status_code = 403


@dataclass(frozen=True)
class ContactResult:
    guest: Guest
    kind: str
    is_first_time: bool


@dataclass(frozen=True)
class DeviceResult:
    guest: Guest
    is_new_device: bool

    @property
    def device_count(self) -> int:
        return self.guest.device_count


def token_expired(
    guest: Guest, *, lifetime: timedelta, now: datetime | None = None
) -> bool:
    if not (guest.token_expires_after_first_use and guest.token_used_first_time):
        return False
    return (now or utcnow()) > guest.token_used_first_time + lifetime


def _stamp_first_use(guest: Guest, now: datetime | None = None) -> bool:
    if guest.token_used_first_time:
        return False
    guest.token_used_first_time = now or utcnow()
    return True


def _classify_or_raise(contact: str) -> tuple[str, str]:
    classified = classify_contact(contact)
    if classified is None:
        raise InvalidContactError("Invalid phone number or email format")
    return classified


def _mismatch_message(kind: str) -> str:
    return "Phone number does not match" if kind == "phone" else "Email does not match"


def lookup_guest(
    session: Session,
    token: str,
    *,
    lifetime: timedelta,
    now: datetime | None = None,
) -> Guest:
    """Return the guest for ``token`` unless it is unknown or expired."""
    guest = get_guest_by_token(session, token)
    if guest is None:
        raise GuestNotFoundError("Invalid token")
    if token_expired(guest, lifetime=lifetime, now=now):
        raise TokenExpiredError("Token has expired")
    return guest


def verify_contact(
    session: Session,
    token: str,
    contact: str,
    *,
    lifetime: timedelta,
    now: datetime | None = None,
) -> ContactResult:
    """Bind a phone number or email to the guest on first use, then check it.

    A contact is stored only while the guest has neither a phone number nor
    an email on record. Afterwards every submission must match a stored
    value of the same kind after normalization.
    """

    kind, normalized = _classify_or_raise(contact)
    guest = lookup_guest(session, token, lifetime=lifetime, now=now)
    stored = getattr(guest, kind)

    if not stored and (guest.phone or guest.email):
        logger.info("Contact kind %s not on record for guest %s", kind, guest.id)
        raise ContactMismatchError(_mismatch_message(kind))

    if not stored:
        setattr(guest, kind, normalized)
        _stamp_first_use(guest, now)
        session.add(guest)
        session.flush()
        return ContactResult(guest=guest, kind=kind, is_first_time=True)

    if stored != normalized:
        logger.info("Contact mismatch for guest %s (%s)", guest.id, kind)
        raise ContactMismatchError(_mismatch_message(kind))

    first_time = _stamp_first_use(guest, now)
    if first_time:
        session.add(guest)
        session.flush()
    return ContactResult(guest=guest, kind=kind, is_first_time=first_time)


def save_device(
    session: Session,
    token: str,
    contact: str,
    fingerprint: str,
    *,
    lifetime: timedelta,
    now: datetime | None = None,
) -> DeviceResult:
    """Register ``fingerprint`` for the guest without exceeding the cap."""
    fingerprint = (fingerprint or "").strip()
    if not fingerprint:
        raise InvalidContactError("Device fingerprint is required")
    kind, normalized = _classify_or_raise(contact)
    guest = lookup_guest(session, token, lifetime=lifetime, now=now)
    if getattr(guest, kind) != normalized:
        raise ContactMismatchError(_mismatch_message(kind))

    devices = list(guest.allowed_devices or [])
    if fingerprint in devices:
        return DeviceResult(guest=guest, is_new_device=False)

    if len(devices) >= (guest.max_devices_allowed or 1):
        logger.info(
            "Device limit reached for guest %s (%d/%d)",
            guest.id,
            len(devices),
            guest.max_devices_allowed,
        )
        raise DeviceLimitError("Device limit reached")

    guest.allowed_devices = [*devices, fingerprint]
    _stamp_first_use(guest, now)
    session.add(guest)
    session.flush()
    return DeviceResult(guest=guest, is_new_device=True)


def serialize_guest_access(guest: Guest) -> dict:
    return {
        "id": guest.id,
        "name": guest.name,
        "phone": guest.phone,
        "email": guest.email,
        "event_access": list(guest.event_access or []),
        "allowed_devices": list(guest.allowed_devices or []),
        "has_phone": bool(guest.phone),
        "has_email": bool(guest.email),
        "token_used_first_time": (
            guest.token_used_first_time.isoformat()
            if guest.token_used_first_time
            else None
        ),
        "token_expires_after_first_use": bool(guest.token_expires_after_first_use),
        "max_devices_allowed": guest.max_devices_allowed,
    }


def admin_preview_guest() -> dict:
    """Virtual guest shown to admins previewing the invitation."""
    return {
        "id": ADMIN_PREVIEW_TOKEN,
        "name": "Admin Preview",
        "phone": None,
        "email": None,
        "event_access": list(EVENT_SLUGS),
        "allowed_devices": [],
        "has_phone": False,
        "has_email": False,
        "token_used_first_time": None,
        "token_expires_after_first_use": False,
        "max_devices_allowed": ADMIN_PREVIEW_MAX_DEVICES,
    }
