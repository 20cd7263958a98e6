"""CRUD helpers for admins, events, and guests."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .auth import hash_password
from .models import Admin, Event, Guest
from .utils import (
    EVENT_SLUGS,
    generate_secure_token,
    normalize_email,
    normalize_phone,
    utcnow,
)

VALID_RSVP_STATUSES = {"yes", "no", "pending"}
VALID_MENU_PREFERENCES = {"veg", "non-veg", "both"}
MIN_DEVICES = 1
MAX_DEVICES = 10
TOKEN_ATTEMPTS = 10

DEFAULT_EVENTS = [
    {
        "slug": "mehndi",
        "title": "Mehendi",
        "description": (
            "Henna painting ceremony, otherwise known as Mehndi, is to be held "
            "the night before the wedding as a way of wishing the bride good "
            "health and prosperity as she makes her journey on to marriage."
        ),
    },
    {"slug": "wedding", "title": "Hindu Wedding", "description": None},
    {
        "slug": "reception",
        "title": "Reception",
        "description": "A grand celebration with dinner, music, and dancing.",
    },
]

EVENT_FIELDS = (
    "title",
    "description",
    "date",
    "time",
    "venue",
    "address",
    "dress_code",
    "map_embed_url",
)


class DuplicateAdminError(ValueError):
    """Raised when an admin email is already taken."""


class LastAdminError(ValueError):
    """Raised when removing the only remaining admin."""


class SelfDeleteError(ValueError):
    """Raised when an admin tries to delete their own account."""


class DuplicateEventError(ValueError):
    """Raised when an event slug already has a row."""


class PreferencesAlreadySubmittedError(ValueError):
    """Raised when a guest submits their RSVP a second time."""


def _now() -> datetime:
    return utcnow()


# Admins


def get_admin_by_email(session: Session, email: str) -> Admin | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    stmt = select(Admin).where(Admin.email == normalized)
    return session.scalars(stmt).first()


def list_admins(session: Session) -> Sequence[Admin]:
    stmt = select(Admin).order_by(Admin.created_at.desc())
    return session.scalars(stmt).all()


def count_admins(session: Session) -> int:
    return session.scalar(select(func.count()).select_from(Admin)) or 0


def create_admin(session: Session, *, email: str, password: str) -> Admin:
    normalized = normalize_email(email)
    if not normalized:
        raise ValueError("Email is required")
    if get_admin_by_email(session, normalized):
        raise DuplicateAdminError("Admin with this email already exists")
    admin = Admin(email=normalized, password_hash=hash_password(password))
    session.add(admin)
    session.flush()
    return admin


def update_admin_email(session: Session, admin: Admin, *, email: str) -> Admin:
    normalized = normalize_email(email)
    existing = get_admin_by_email(session, normalized)
    if existing and existing.id != admin.id:
        raise DuplicateAdminError("Email already in use")
    admin.email = normalized
    admin.updated_at = _now()
    session.add(admin)
    session.flush()
    return admin


def set_admin_password(session: Session, admin: Admin, *, password: str) -> Admin:
    admin.password_hash = hash_password(password)
    admin.updated_at = _now()
    session.add(admin)
    session.flush()
    return admin


def delete_admin(
    session: Session, admin: Admin, *, acting_admin_id: str | None = None
) -> None:
    """Delete an admin unless it is the caller or the last one left."""
    if acting_admin_id is not None and admin.id == acting_admin_id:
        raise SelfDeleteError("You cannot delete your own account")
    if count_admins(session) <= 1:
        raise LastAdminError("Cannot delete the last admin")
    session.delete(admin)
    session.flush()


def ensure_default_admin(
    session: Session, *, email: str, password: str
) -> tuple[Admin, bool]:
    """Return the bootstrap admin, creating it when missing."""
    existing = get_admin_by_email(session, email)
    if existing:
        return existing, False
    return create_admin(session, email=email, password=password), True


# Events


def get_event_by_slug(session: Session, slug: str) -> Event | None:
    normalized = (slug or "").strip().lower()
    if not normalized:
        return None
    stmt = select(Event).where(Event.slug == normalized)
    return session.scalars(stmt).first()


def list_events(session: Session) -> Sequence[Event]:
    stmt = select(Event).order_by(Event.created_at.asc())
    events = session.scalars(stmt).all()
    order = {slug: index for index, slug in enumerate(EVENT_SLUGS)}
    return sorted(events, key=lambda event: order.get(event.slug, len(order)))


def create_event(
    session: Session,
    *,
    slug: str,
    title: str,
    description: str | None = None,
    date: datetime | None = None,
    time: str | None = None,
    venue: str | None = None,
    address: str | None = None,
    dress_code: str | None = None,
    map_embed_url: str | None = None,
) -> Event:
    """Create the row for one of the fixed event slugs."""
    if slug not in EVENT_SLUGS:
        raise ValueError(f"Unknown event slug: {slug!r}")
    if get_event_by_slug(session, slug):
        raise DuplicateEventError("Event already exists for this slug")
    event = Event(
        slug=slug,
        title=title,
        description=description or None,
        date=date,
        time=time or None,
        venue=venue or None,
        address=address or None,
        dress_code=dress_code or None,
        map_embed_url=map_embed_url or None,
    )
    session.add(event)
    session.flush()
    return event


def update_event(session: Session, event: Event, **changes) -> Event:
    """Apply a partial update; unknown keys are rejected."""
    unknown = set(changes) - set(EVENT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown event fields: {', '.join(sorted(unknown))}")
    for field, value in changes.items():
        setattr(event, field, value)
    event.updated_at = _now()
    session.add(event)
    session.flush()
    return event


def ensure_default_events(session: Session) -> list[str]:
    """Create missing event rows and return the slugs that were added."""
    created: list[str] = []
    for defaults in DEFAULT_EVENTS:
        if get_event_by_slug(session, defaults["slug"]):
            continue
        create_event(session, **defaults)
        created.append(defaults["slug"])
    return created


# Guests


def _unique_token(session: Session) -> str:
    for _ in range(TOKEN_ATTEMPTS):
        token = generate_secure_token()
        if get_guest_by_token(session, token) is None:
            return token
    raise RuntimeError("Unable to generate a unique guest token")


def _clamp_devices(value: int | None) -> int:
    try:
        parsed = int(value or MIN_DEVICES)
    except (TypeError, ValueError):
        parsed = MIN_DEVICES
    return max(MIN_DEVICES, min(parsed, MAX_DEVICES))


def _clean_event_access(slugs: Iterable[str]) -> list[str]:
    requested = set(slugs)
    unknown = requested - set(EVENT_SLUGS)
    if unknown:
        raise ValueError(f"Unknown event slugs: {', '.join(sorted(unknown))}")
    return [slug for slug in EVENT_SLUGS if slug in requested]


def get_guest_by_token(session: Session, token: str) -> Guest | None:
    if not token:
        return None
    stmt = select(Guest).where(Guest.token == token)
    return session.scalars(stmt).first()


def get_guest_by_name(session: Session, name: str) -> Guest | None:
    stmt = select(Guest).where(Guest.name == name)
    return session.scalars(stmt).first()


def list_guests(session: Session, guest_ids: Sequence[str] | None = None) -> Sequence[Guest]:
    stmt = select(Guest).order_by(Guest.created_at.desc())
    if guest_ids:
        stmt = stmt.where(Guest.id.in_(list(guest_ids)))
    return session.scalars(stmt).all()


def create_guest(
    session: Session,
    *,
    name: str,
    event_access: Iterable[str],
    phone: str | None = None,
    email: str | None = None,
    max_devices_allowed: int | None = MIN_DEVICES,
    number_of_attendees: int | None = 1,
) -> Guest:
    """Create a guest with a fresh token and an empty device list."""
    cleaned_name = (name or "").strip()
    if not cleaned_name:
        raise ValueError("Name is required")
    guest = Guest(
        name=cleaned_name,
        phone=normalize_phone(phone) or None,
        email=normalize_email(email) or None,
        token=_unique_token(session),
        event_access=_clean_event_access(event_access),
        allowed_devices=[],
        max_devices_allowed=_clamp_devices(max_devices_allowed),
        number_of_attendees=max(int(number_of_attendees or 1), 1),
    )
    session.add(guest)
    session.flush()
    return guest


def update_guest(
    session: Session,
    guest: Guest,
    *,
    name: str,
    phone: str | None,
    email: str | None,
    event_access: Iterable[str],
    max_devices_allowed: int,
    token_expires_after_first_use: bool,
) -> Guest:
    cleaned_name = (name or "").strip()
    if not cleaned_name:
        raise ValueError("Name is required")
    guest.name = cleaned_name
    guest.phone = normalize_phone(phone) or None
    guest.email = normalize_email(email) or None
    guest.event_access = _clean_event_access(event_access)
    guest.max_devices_allowed = _clamp_devices(max_devices_allowed)
    # keep the earliest registered devices when the cap shrinks
    guest.allowed_devices = list(guest.allowed_devices or [])[: guest.max_devices_allowed]
    guest.token_expires_after_first_use = bool(token_expires_after_first_use)
    guest.updated_at = _now()
    session.add(guest)
    session.flush()
    return guest


def regenerate_guest_token(session: Session, guest: Guest) -> Guest:
    """Issue a new token, forgetting registered devices and first use."""
    guest.token = _unique_token(session)
    guest.allowed_devices = []
    guest.token_used_first_time = None
    guest.updated_at = _now()
    session.add(guest)
    session.flush()
    return guest


def remove_guest_device(session: Session, guest: Guest, fingerprint: str) -> Guest:
    guest.allowed_devices = [d for d in guest.allowed_devices or [] if d != fingerprint]
    guest.updated_at = _now()
    session.add(guest)
    session.flush()
    return guest


def clear_guest_devices(session: Session, guest: Guest) -> Guest:
    guest.allowed_devices = []
    guest.updated_at = _now()
    session.add(guest)
    session.flush()
    return guest


def delete_all_guests(session: Session) -> int:
    result = session.execute(delete(Guest))
    return result.rowcount or 0


def reset_guest_rsvps(session: Session, guest_ids: Sequence[str]) -> int:
    """Clear RSVP and preference answers for the given guests."""
    if not guest_ids:
        return 0
    stmt = (
        update(Guest)
        .where(Guest.id.in_(list(guest_ids)))
        .values(
            preferences_submitted=False,
            rsvp_submitted=False,
            rsvp_status=None,
            number_of_attendees_per_event=None,
            menu_preference=None,
            dietary_restrictions=None,
            additional_info=None,
            rsvp_submitted_at=None,
            number_of_attendees=1,
            updated_at=_now(),
        )
        .execution_options(synchronize_session="fetch")
    )
    result = session.execute(stmt)
    return result.rowcount or 0


def submit_preferences(
    session: Session,
    guest: Guest,
    *,
    rsvp_status: dict[str, str],
    attendees_per_event: dict[str, int] | None,
    menu_preference: str,
    dietary_restrictions: str | None = None,
    additional_info: str | None = None,
) -> Guest:
    """Record a guest's one-time RSVP answers."""
    if guest.preferences_submitted:
        raise PreferencesAlreadySubmittedError(
            "Preferences have already been submitted for this invitation"
        )
    access = list(guest.event_access or [])
    statuses = {slug: (rsvp_status.get(slug) or "").lower() for slug in access}
    missing = [slug for slug, status in statuses.items() if not status]
    if missing:
        raise ValueError(f"RSVP status missing for: {', '.join(missing)}")
    invalid = [slug for slug, status in statuses.items() if status not in VALID_RSVP_STATUSES]
    if invalid:
        raise ValueError(f"Invalid RSVP status for: {', '.join(invalid)}")
    if menu_preference not in VALID_MENU_PREFERENCES:
        raise ValueError("Please select a menu preference")

    counts: dict[str, int] = {}
    for slug, status in statuses.items():
        if status != "yes":
            continue
        count = int((attendees_per_event or {}).get(slug) or 0)
        if count < 1:
            raise ValueError(f"Number of guests attending is required for: {slug}")
        counts[slug] = count

    guest.rsvp_status = statuses
    guest.number_of_attendees_per_event = counts
    guest.number_of_attendees = max(counts.values(), default=1)
    guest.menu_preference = menu_preference
    guest.dietary_restrictions = (dietary_restrictions or "").strip() or None
    guest.additional_info = (additional_info or "").strip() or None
    guest.rsvp_submitted = True
    guest.preferences_submitted = True
    guest.rsvp_submitted_at = _now()
    guest.updated_at = _now()
    session.add(guest)
    session.flush()
    return guest


def compute_stats(session: Session) -> dict:
    """Aggregate invite-based and RSVP-based attendee numbers per event."""
    guests = session.scalars(select(Guest)).all()
    stats = {
        "total_invite_links": len(guests),
        "total_attendees_invite_based": 0,
        "invite_based": {slug: 0 for slug in EVENT_SLUGS},
        "rsvp_based": {
            slug: {"total_attendees": 0, "veg": 0, "non_veg": 0} for slug in EVENT_SLUGS
        },
        "rsvp_submitted": 0,
    }
    for guest in guests:
        access = set(guest.event_access or [])
        attendees = guest.number_of_attendees or 0
        stats["total_attendees_invite_based"] += attendees
        for slug in EVENT_SLUGS:
            if slug in access:
                stats["invite_based"][slug] += attendees
        if not (guest.rsvp_submitted and guest.rsvp_status):
            continue
        stats["rsvp_submitted"] += 1
        per_event = guest.number_of_attendees_per_event or {}
        for slug in EVENT_SLUGS:
            if slug not in access or guest.rsvp_status.get(slug) != "yes":
                continue
            count = int(per_event.get(slug) or attendees)
            bucket = stats["rsvp_based"][slug]
            bucket["total_attendees"] += count
            if guest.menu_preference in {"veg", "both"}:
                bucket["veg"] += count
            if guest.menu_preference in {"non-veg", "both"}:
                bucket["non_veg"] += count
    return stats
