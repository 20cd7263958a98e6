"""Utility helpers for GuestPass."""

from __future__ import annotations

import re
import secrets
import string
from datetime import UTC, datetime

EVENT_SLUGS = ("mehndi", "wedding", "reception")
EVENT_ACCESS_PRESETS: dict[str, list[str]] = {
    "all-events": list(EVENT_SLUGS),
    "reception-only": ["reception"],
}

TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_LENGTH = 12
PHONE_MIN_DIGITS = 8
PHONE_MAX_DIGITS = 15

_email_pattern = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_non_digit = re.compile(r"\D")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def generate_secure_token(length: int = TOKEN_LENGTH) -> str:
    """Return a random alphanumeric invitation token."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def normalize_phone(value: str | None) -> str:
    return _non_digit.sub("", value or "")


def is_valid_phone(value: str | None) -> bool:
    return PHONE_MIN_DIGITS <= len(normalize_phone(value)) <= PHONE_MAX_DIGITS


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def is_valid_email(value: str | None) -> bool:
    return bool(_email_pattern.match(normalize_email(value)))


def classify_contact(value: str | None) -> tuple[str, str] | None:
    """Return ``(kind, normalized)`` for a phone number or email address.

    Email wins when the trimmed value looks like an address; otherwise the
    value is treated as a phone number when it carries 8 to 15 digits.
    Returns ``None`` for anything else.
    """

    if is_valid_email(value):
        return "email", normalize_email(value)
    if is_valid_phone(value):
        return "phone", normalize_phone(value)
    return None


def expand_event_access(preset: str) -> list[str]:
    """Expand an admin-facing access preset into concrete event slugs."""
    try:
        return list(EVENT_ACCESS_PRESETS[preset])
    except KeyError as exc:
        raise ValueError(f"Unknown event access preset: {preset!r}") from exc


def describe_event_access(slugs: list[str]) -> str:
    """Return the preset name matching a slug list, or ``custom``."""
    for name, expanded in EVENT_ACCESS_PRESETS.items():
        if sorted(slugs) == sorted(expanded):
            return name
    return "custom"


def has_all_events(slugs: list[str] | None) -> bool:
    return set(slugs or []) >= set(EVENT_SLUGS)
