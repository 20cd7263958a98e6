"""Invitation emails through the Brevo transactional API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import settings
from .models import Guest
from .utils import has_all_events

logger = logging.getLogger("uvicorn.error")

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"

GUEST_NAME_PLACEHOLDER = "{{params.guestName}}"
INVITE_LINK_PLACEHOLDER = "{{params.inviteLink}}"
BASE_URL_PLACEHOLDER = "{{params.baseUrl}}"

ALL_EVENTS_OPENING = (
    "You are invited to Jay and Ankita's wedding celebration! Below is your "
    "personalized invitation link to RSVP:"
)
RECEPTION_OPENING = (
    "You are invited to Jay and Ankita's wedding reception! Below is your "
    "personalized invitation link to RSVP:"
)

templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(enabled_extensions=("html",)),
    keep_trailing_newline=True,
)


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects or never receives a message."""


@dataclass
class BulkSendResult:
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.sent + self.failed + self.skipped

    def as_dict(self) -> dict:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": {"errors": list(self.errors)},
        }


def invite_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/invite/{token}"


def _opening_text(event_access: Sequence[str] | None) -> str:
    return ALL_EVENTS_OPENING if has_all_events(list(event_access or [])) else RECEPTION_OPENING


def default_invitation_html(event_access: Sequence[str] | None = None) -> str:
    """Default HTML invitation with Brevo placeholders left in place."""
    return templates.get_template("email/invitation.html").render(
        opening_text=_opening_text(event_access),
        guest_name=GUEST_NAME_PLACEHOLDER,
        invite_link=INVITE_LINK_PLACEHOLDER,
    )


def default_invitation_text(event_access: Sequence[str] | None = None) -> str:
    return templates.get_template("email/invitation.txt").render(
        opening_text=_opening_text(event_access),
        guest_name=GUEST_NAME_PLACEHOLDER,
        invite_link=INVITE_LINK_PLACEHOLDER,
    )


def replace_template_variables(
    content: str | None,
    *,
    guest_name: str | None = None,
    invite_link: str | None = None,
    base_url: str | None = None,
) -> str:
    """Fill Brevo placeholders locally, used for previews."""
    if not content:
        return ""
    return (
        content.replace(GUEST_NAME_PLACEHOLDER, guest_name or "John Doe")
        .replace(
            INVITE_LINK_PLACEHOLDER,
            invite_link or "https://example.com/invite/sample-token",
        )
        .replace(BASE_URL_PLACEHOLDER, base_url or "https://example.com")
    )


def send_transactional_email(
    *,
    to_email: str,
    to_name: str | None,
    subject: str,
    html_content: str | None = None,
    text_content: str | None = None,
    params: dict | None = None,
) -> str:
    """Send a single email and return the provider message id."""
    if not settings.brevo_api_key:
        raise EmailDeliveryError("BREVO_API_KEY is not configured")
    if bool(html_content) == bool(text_content):
        raise ValueError("Provide exactly one of html_content or text_content")

    recipient = {"email": to_email}
    if to_name:
        recipient["name"] = to_name
    payload: dict = {
        "sender": {
            "name": settings.brevo_sender_name,
            "email": settings.brevo_sender_email,
        },
        "to": [recipient],
        "subject": subject,
    }
    if html_content:
        payload["htmlContent"] = html_content
    else:
        payload["textContent"] = text_content
    if params:
        payload["params"] = params

    try:
        response = requests.post(
            BREVO_API_URL,
            json=payload,
            headers={
                "accept": "application/json",
                "api-key": settings.brevo_api_key,
                "content-type": "application/json",
            },
            timeout=settings.email_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise EmailDeliveryError(f"Email provider unreachable: {exc}") from exc

    try:
        data = response.json()
    except ValueError:
        data = {}
    if not response.ok:
        code = data.get("code") or "UNKNOWN_ERROR"
        message = data.get("message") or f"Brevo API error: {response.status_code}"
        raise EmailDeliveryError(f"{message} (Code: {code})")
    return str(data.get("messageId") or "unknown")


Sender = Callable[..., str]


def send_to_guest(
    guest: Guest,
    *,
    subject: str,
    base_url: str,
    html_content: str | None = None,
    text_content: str | None = None,
    sender: Sender | None = None,
) -> str:
    if not guest.email:
        raise ValueError("Guest does not have an email address")
    send = sender or send_transactional_email
    return send(
        to_email=guest.email,
        to_name=guest.name,
        subject=subject,
        html_content=html_content,
        text_content=text_content,
        params={
            "guestName": guest.name,
            "inviteLink": invite_link(base_url, guest.token),
            "baseUrl": base_url,
        },
    )


def content_for_guest(
    guest: Guest, *, custom_message: str | None, is_plain_text: bool
) -> tuple[str | None, str | None]:
    """Return ``(html, text)`` for a guest, falling back to the default template."""
    if custom_message:
        return (None, custom_message) if is_plain_text else (custom_message, None)
    if is_plain_text:
        return None, default_invitation_text(guest.event_access)
    return default_invitation_html(guest.event_access), None


def send_bulk(
    guests: Sequence[Guest],
    *,
    subject: str,
    base_url: str,
    content: Callable[[Guest], tuple[str | None, str | None]],
    sender: Sender | None = None,
) -> BulkSendResult:
    """Email guests one at a time; failures are recorded and skipped over."""
    result = BulkSendResult()
    for guest in guests:
        if not (guest.email or "").strip():
            result.skipped += 1
            continue
        html_content, text_content = content(guest)
        try:
            send_to_guest(
                guest,
                subject=subject,
                base_url=base_url,
                html_content=html_content,
                text_content=text_content,
                sender=sender,
            )
        except (EmailDeliveryError, ValueError) as exc:
            result.failed += 1
            result.errors.append(
                {"guest_id": guest.id, "guest_name": guest.name, "error": str(exc)}
            )
            logger.error("Failed to send email to %s: %s", guest.email, exc)
            continue
        result.sent += 1
    return result
