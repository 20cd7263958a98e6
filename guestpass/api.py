"""FastAPI application for GuestPass."""

from __future__ import annotations

import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import func, select, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from .access import (
    ADMIN_PREVIEW_TOKEN,
    AccessError,
    admin_preview_guest,
    lookup_guest,
    save_device,
    serialize_guest_access,
    verify_contact,
)
from .auth import (
    ADMIN_COOKIE_NAME,
    MIN_PASSWORD_LENGTH,
    create_admin_token,
    decode_admin_token,
    verify_password,
)
from .config import settings
from .crud import (
    DuplicateAdminError,
    DuplicateEventError,
    LastAdminError,
    MAX_DEVICES,
    MIN_DEVICES,
    PreferencesAlreadySubmittedError,
    SelfDeleteError,
    clear_guest_devices,
    compute_stats,
    create_admin,
    create_event,
    create_guest,
    delete_admin,
    delete_all_guests,
    get_admin_by_email,
    get_event_by_slug,
    list_admins,
    list_events,
    list_guests,
    regenerate_guest_token,
    remove_guest_device,
    reset_guest_rsvps,
    set_admin_password,
    submit_preferences,
    update_admin_email,
    update_event,
    update_guest,
)
from .database import SessionLocal
from .importer import (
    TEMPLATE_FILENAME,
    XLSX_MEDIA_TYPE,
    ImportFileError,
    build_template,
    import_guests,
    is_spreadsheet_upload,
)
from .mailer import (
    EmailDeliveryError,
    content_for_guest,
    default_invitation_html,
    default_invitation_text,
    invite_link,
    replace_template_variables,
    send_bulk,
    send_to_guest,
)
from .models import Admin, Event, Guest
from .ratelimit import limiter
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .utils import describe_event_access, expand_event_access, is_valid_email

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

RATE_LIMIT_WINDOW_SECONDS = 60
LOGIN_LIMIT = 5
VERIFY_CONTACT_LIMIT = 5
SAVE_DEVICE_LIMIT = 10
VERIFY_TOKEN_LIMIT = 20


def _no_cache(response: Response) -> Response:
    """Prevent clients from caching dynamic responses."""
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("guestpass")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="GuestPass", version=APP_VERSION, lifespan=lifespan)


@app.middleware("http")
async def no_cache_api_responses(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith("/api/"):
        _no_cache(response)
    return response


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# -------- Error handling --------


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _no_cache(
        JSONResponse(
            {"detail": "Invalid request data", "errors": _validation_errors(exc)},
            status_code=400,
        )
    )


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return _no_cache(JSONResponse({"detail": detail}, status_code=status))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    body: dict = {"detail": "Internal server error"}
    if settings.is_development:
        body["message"] = str(exc)
        body["traceback"] = traceback.format_exception(exc)
    return _no_cache(JSONResponse(body, status_code=500))


def _access_error(exc: AccessError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# -------- Request helpers --------


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or ""
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def _enforce_rate_limit(request: Request, scope: str, limit: int) -> None:
    ip = _client_ip(request)
    result = limiter.hit(f"{scope}:{ip}", limit, RATE_LIMIT_WINDOW_SECONDS)
    if result.allowed:
        return
    logger.warning("Rate limit hit for %s from %s", scope, ip)
    raise HTTPException(
        status_code=429,
        detail="Too many requests. Please try again later.",
        headers={"Retry-After": str(result.retry_after(limiter.now()))},
    )


def _admin_from_cookie(request: Request, db: Session) -> Admin | None:
    admin_id = decode_admin_token(request.cookies.get(ADMIN_COOKIE_NAME))
    if not admin_id:
        return None
    return db.get(Admin, admin_id)


def require_admin(request: Request, db: Session = Depends(get_db)) -> Admin:
    admin = _admin_from_cookie(request, db)
    if admin is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return admin


def _is_admin_preview(token: str, request: Request, db: Session) -> bool:
    return token == ADMIN_PREVIEW_TOKEN and _admin_from_cookie(request, db) is not None


def _parse_datetime(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date") from exc


# -------- Serialization --------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize_admin(admin: Admin) -> dict:
    return {
        "id": admin.id,
        "email": admin.email,
        "created_at": _iso(admin.created_at),
        "updated_at": _iso(admin.updated_at),
    }


def _serialize_event(event: Event) -> dict:
    return {
        "id": event.id,
        "slug": event.slug,
        "title": event.title,
        "description": event.description,
        "date": _iso(event.date),
        "time": event.time,
        "venue": event.venue,
        "address": event.address,
        "dress_code": event.dress_code,
        "map_embed_url": event.map_embed_url,
        "created_at": _iso(event.created_at),
        "updated_at": _iso(event.updated_at),
    }


def _serialize_preferences(guest: Guest) -> dict | None:
    if not guest.preferences_submitted:
        return None
    return {
        "rsvp_status": guest.rsvp_status or {},
        "number_of_attendees_per_event": guest.number_of_attendees_per_event or {},
        "number_of_attendees": guest.number_of_attendees,
        "menu_preference": guest.menu_preference,
        "dietary_restrictions": guest.dietary_restrictions,
        "additional_info": guest.additional_info,
        "rsvp_submitted_at": _iso(guest.rsvp_submitted_at),
    }


def _serialize_guest(guest: Guest) -> dict:
    access = list(guest.event_access or [])
    return {
        "id": guest.id,
        "name": guest.name,
        "phone": guest.phone,
        "email": guest.email,
        "token": guest.token,
        "invite_link": invite_link(settings.base_url, guest.token),
        "event_access": access,
        "event_access_type": describe_event_access(access),
        "allowed_devices": list(guest.allowed_devices or []),
        "max_devices_allowed": guest.max_devices_allowed,
        "number_of_attendees": guest.number_of_attendees,
        "token_used_first_time": _iso(guest.token_used_first_time),
        "token_expires_after_first_use": bool(guest.token_expires_after_first_use),
        "rsvp_submitted": bool(guest.rsvp_submitted),
        "rsvp_status": guest.rsvp_status,
        "number_of_attendees_per_event": guest.number_of_attendees_per_event,
        "rsvp_submitted_at": _iso(guest.rsvp_submitted_at),
        "menu_preference": guest.menu_preference,
        "dietary_restrictions": guest.dietary_restrictions,
        "additional_info": guest.additional_info,
        "preferences_submitted": bool(guest.preferences_submitted),
        "created_at": _iso(guest.created_at),
        "updated_at": _iso(guest.updated_at),
    }


# -------- Payloads --------


class ApiPayload(BaseModel):
    """Accept snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginPayload(ApiPayload):
    email: str
    password: str


class AdminCreatePayload(ApiPayload):
    email: str
    password: str


class AdminUpdatePayload(ApiPayload):
    email: str


class PasswordPayload(ApiPayload):
    password: str


class EventCreatePayload(ApiPayload):
    slug: str
    title: str
    description: str | None = None
    date: str | None = Field(None, description="ISO datetime string")
    time: str | None = None
    venue: str | None = None
    address: str | None = None
    dress_code: str | None = None
    map_embed_url: str | None = None


class EventUpdatePayload(ApiPayload):
    title: str | None = None
    description: str | None = None
    date: str | None = Field(None, description="ISO datetime string")
    time: str | None = None
    venue: str | None = None
    address: str | None = None
    dress_code: str | None = None
    map_embed_url: str | None = None


class GuestCreatePayload(ApiPayload):
    name: str
    phone: str | None = None
    email: str | None = None
    event_access: str = "all-events"
    max_devices_allowed: int = Field(MIN_DEVICES, ge=MIN_DEVICES, le=MAX_DEVICES)
    number_of_attendees: int = Field(1, ge=1)


class GuestUpdatePayload(ApiPayload):
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    event_access: list[str] | None = None
    max_devices_allowed: int | None = Field(None, ge=MIN_DEVICES, le=MAX_DEVICES)
    regenerate_token: bool = False
    remove_device: str | None = None
    clear_devices: bool = False
    token_expires_after_first_use: bool | None = None


class ResetRsvpPayload(ApiPayload):
    guest_ids: list[str] = Field(..., min_length=1)


class SendEmailPayload(ApiPayload):
    guest_id: str
    subject: str | None = None
    custom_message: str | None = None
    is_plain_text: bool = False


class BulkEmailPayload(ApiPayload):
    guest_ids: list[str] | None = None
    subject: str | None = None
    custom_message: str | None = None
    is_plain_text: bool = False


class CustomEmailPayload(ApiPayload):
    guest_ids: list[str] | None = None
    subject: str = Field(..., min_length=1)
    html_content: str | None = None
    text_content: str | None = None


class TokenPayload(ApiPayload):
    token: str


class ContactPayload(ApiPayload):
    token: str
    contact: str | None = None
    phone: str | None = None
    email: str | None = None

    @property
    def contact_value(self) -> str:
        return (self.contact or self.phone or self.email or "").strip()


class DevicePayload(ContactPayload):
    device_fingerprint: str


class PreferencesPayload(ApiPayload):
    token: str
    rsvp_status: dict[str, str]
    number_of_attendees_per_event: dict[str, int] | None = None
    menu_preference: str
    dietary_restrictions: str | None = None
    additional_info: str | None = None


# -------- Admin auth --------


@app.post("/api/admin/login")
def api_admin_login(
    payload: LoginPayload,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    _enforce_rate_limit(request, "login", LOGIN_LIMIT)
    admin = get_admin_by_email(db, payload.email)
    if admin is None or not verify_password(payload.password, admin.password_hash):
        logger.warning("Failed admin login for %s from %s", payload.email, _client_ip(request))
        raise HTTPException(status_code=401, detail="Invalid credentials")
    response.set_cookie(
        ADMIN_COOKIE_NAME,
        create_admin_token(admin.id),
        max_age=int(settings.session_lifetime.total_seconds()),
        path="/",
        httponly=True,
        samesite="lax",
        secure=not settings.is_development,
    )
    logger.info("Admin %s logged in", admin.email)
    return {"success": True, "admin": _serialize_admin(admin)}


@app.post("/api/admin/logout")
def api_admin_logout(response: Response):
    response.delete_cookie(
        ADMIN_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=not settings.is_development,
    )
    return {"success": True}


# -------- Admin management --------


def _ensure_admin(db: Session, admin_id: str) -> Admin:
    admin = db.get(Admin, admin_id)
    if admin is None:
        raise HTTPException(status_code=404, detail="Admin not found")
    return admin


def _validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
        )


def _validate_admin_email(email: str) -> None:
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email format")


@app.get("/api/admin/admins")
def api_list_admins(
    db: Session = Depends(get_db), _admin: Admin = Depends(require_admin)
):
    return {"admins": [_serialize_admin(admin) for admin in list_admins(db)]}


@app.post("/api/admin/admins", status_code=201)
def api_create_admin(
    payload: AdminCreatePayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    _validate_admin_email(payload.email)
    _validate_password(payload.password)
    try:
        admin = create_admin(db, email=payload.email, password=payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"admin": _serialize_admin(admin)}


@app.patch("/api/admin/admins/{admin_id}")
def api_update_admin(
    admin_id: str,
    payload: AdminUpdatePayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    target = _ensure_admin(db, admin_id)
    _validate_admin_email(payload.email)
    try:
        update_admin_email(db, target, email=payload.email)
    except DuplicateAdminError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"admin": _serialize_admin(target)}


@app.patch("/api/admin/admins/{admin_id}/password")
def api_update_admin_password(
    admin_id: str,
    payload: PasswordPayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    target = _ensure_admin(db, admin_id)
    _validate_password(payload.password)
    try:
        set_admin_password(db, target, password=payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True}


@app.delete("/api/admin/admins/{admin_id}")
def api_delete_admin(
    admin_id: str,
    db: Session = Depends(get_db),
    current: Admin = Depends(require_admin),
):
    if admin_id == current.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    target = _ensure_admin(db, admin_id)
    try:
        delete_admin(db, target, acting_admin_id=current.id)
    except (SelfDeleteError, LastAdminError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("Admin %s deleted by %s", target.email, current.email)
    return {"success": True}


# -------- Events --------


def _ensure_event(db: Session, event_id: str) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.get("/api/admin/events")
def api_admin_list_events(
    db: Session = Depends(get_db), _admin: Admin = Depends(require_admin)
):
    return {"events": [_serialize_event(event) for event in list_events(db)]}


@app.post("/api/admin/events", status_code=201)
def api_admin_create_event(
    payload: EventCreatePayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    fields = payload.model_dump(exclude={"date"})
    try:
        event = create_event(db, date=_parse_datetime(payload.date), **fields)
    except (DuplicateEventError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"event": _serialize_event(event)}


@app.patch("/api/admin/events/{event_id}")
def api_admin_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    event = _ensure_event(db, event_id)
    changes = payload.model_dump(exclude_unset=True)
    if "date" in changes:
        changes["date"] = _parse_datetime(changes["date"])
    if "title" in changes and not (changes["title"] or "").strip():
        raise HTTPException(status_code=400, detail="Title is required")
    update_event(db, event, **changes)
    return {"event": _serialize_event(event)}


@app.get("/api/events/{slug}")
def api_get_event(slug: str, db: Session = Depends(get_db)):
    event = get_event_by_slug(db, slug)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return {"event": _serialize_event(event)}


# -------- Guest management --------


def _ensure_guest(db: Session, guest_id: str) -> Guest:
    guest = db.get(Guest, guest_id)
    if guest is None:
        raise HTTPException(status_code=404, detail="Guest not found")
    return guest


def _validate_guest_email(email: str | None) -> None:
    if email and email.strip() and not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email format")


@app.get("/api/admin/guest")
def api_list_guests(
    db: Session = Depends(get_db), _admin: Admin = Depends(require_admin)
):
    return {"guests": [_serialize_guest(guest) for guest in list_guests(db)]}


@app.post("/api/admin/guest", status_code=201)
def api_create_guest(
    payload: GuestCreatePayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    _validate_guest_email(payload.email)
    try:
        guest = create_guest(
            db,
            name=payload.name,
            phone=payload.phone,
            email=payload.email,
            event_access=expand_event_access(payload.event_access),
            max_devices_allowed=payload.max_devices_allowed,
            number_of_attendees=payload.number_of_attendees,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"guest": _serialize_guest(guest)}


@app.post("/api/admin/guest/delete-all")
def api_delete_all_guests(
    db: Session = Depends(get_db), admin: Admin = Depends(require_admin)
):
    deleted = delete_all_guests(db)
    logger.warning("Admin %s deleted all %d guests", admin.email, deleted)
    return {"success": True, "deleted": deleted}


@app.post("/api/admin/guest/reset-rsvp")
def api_reset_rsvps(
    payload: ResetRsvpPayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    reset = reset_guest_rsvps(db, payload.guest_ids)
    return {"success": True, "reset": reset}


@app.post("/api/admin/guest/import")
def api_import_guests(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    if not is_spreadsheet_upload(file.filename, file.content_type):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload an Excel file (.xlsx or .xls)",
        )
    try:
        report = import_guests(db, file.file.read())
    except ImportFileError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info(
        "Imported %d guests (%d errors, %d skipped)",
        len(report.success),
        len(report.errors),
        len(report.skipped),
    )
    return report.as_dict()


@app.get("/api/admin/guest/import")
def api_import_template(_admin: Admin = Depends(require_admin)):
    return Response(
        content=build_template(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


@app.patch("/api/admin/guest/{guest_id}")
def api_update_guest(
    guest_id: str,
    payload: GuestUpdatePayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    guest = _ensure_guest(db, guest_id)
    provided = payload.model_fields_set
    if "email" in provided:
        _validate_guest_email(payload.email)
    try:
        update_guest(
            db,
            guest,
            name=payload.name if "name" in provided else guest.name,
            phone=payload.phone if "phone" in provided else guest.phone,
            email=payload.email if "email" in provided else guest.email,
            event_access=(
                payload.event_access
                if payload.event_access is not None
                else list(guest.event_access or [])
            ),
            max_devices_allowed=payload.max_devices_allowed or guest.max_devices_allowed,
            token_expires_after_first_use=(
                payload.token_expires_after_first_use
                if payload.token_expires_after_first_use is not None
                else guest.token_expires_after_first_use
            ),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if payload.regenerate_token:
        regenerate_guest_token(db, guest)
    elif payload.clear_devices:
        clear_guest_devices(db, guest)
    elif payload.remove_device:
        remove_guest_device(db, guest, payload.remove_device)
    return {"guest": _serialize_guest(guest)}


@app.delete("/api/admin/guest/{guest_id}")
def api_delete_guest(
    guest_id: str,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    guest = _ensure_guest(db, guest_id)
    db.delete(guest)
    return {"success": True}


@app.get("/api/admin/stats")
def api_stats(db: Session = Depends(get_db), _admin: Admin = Depends(require_admin)):
    return {"stats": compute_stats(db)}


# -------- Invitation emails --------


def _guests_for_email(db: Session, guest_ids: list[str] | None) -> list[Guest]:
    guests = list(list_guests(db, guest_ids))
    if not any((guest.email or "").strip() for guest in guests):
        raise HTTPException(status_code=400, detail="No guests with email addresses found")
    return guests


@app.get("/api/admin/guest/email/preview")
def api_preview_invitation(
    guest_id: str | None = Query(None),
    is_plain_text: bool = Query(False),
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    """Render the default invitation with sample or real guest values."""
    guest = _ensure_guest(db, guest_id) if guest_id else None
    access = list(guest.event_access or []) if guest else None
    if is_plain_text:
        template = default_invitation_text(access)
    else:
        template = default_invitation_html(access)
    content = replace_template_variables(
        template,
        guest_name=guest.name if guest else None,
        invite_link=invite_link(settings.base_url, guest.token) if guest else None,
        base_url=settings.base_url,
    )
    return {
        "subject": settings.email_subject,
        "is_plain_text": is_plain_text,
        "content": content,
    }


@app.post("/api/admin/guest/email/send")
def api_send_invitation(
    payload: SendEmailPayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    guest = _ensure_guest(db, payload.guest_id)
    if not (guest.email or "").strip():
        raise HTTPException(status_code=400, detail="Guest does not have an email address")
    html_content, text_content = content_for_guest(
        guest, custom_message=payload.custom_message, is_plain_text=payload.is_plain_text
    )
    try:
        message_id = send_to_guest(
            guest,
            subject=payload.subject or settings.email_subject,
            base_url=settings.base_url,
            html_content=html_content,
            text_content=text_content,
        )
    except EmailDeliveryError as exc:
        logger.error("Failed to send invitation to %s: %s", guest.email, exc)
        raise HTTPException(status_code=502, detail=f"Failed to send email: {exc}") from exc
    return {"success": True, "message_id": message_id}


@app.post("/api/admin/guest/email/send-bulk")
def api_send_bulk_invitations(
    payload: BulkEmailPayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    guests = _guests_for_email(db, payload.guest_ids)
    result = send_bulk(
        guests,
        subject=payload.subject or settings.email_subject,
        base_url=settings.base_url,
        content=lambda guest: content_for_guest(
            guest,
            custom_message=payload.custom_message,
            is_plain_text=payload.is_plain_text,
        ),
    )
    logger.info(
        "Bulk invitation run: %d sent, %d failed, %d skipped",
        result.sent,
        result.failed,
        result.skipped,
    )
    return {"success": True, **result.as_dict()}


@app.post("/api/admin/guest/email/send-custom")
def api_send_custom_email(
    payload: CustomEmailPayload,
    db: Session = Depends(get_db),
    _admin: Admin = Depends(require_admin),
):
    if bool(payload.html_content) == bool(payload.text_content):
        raise HTTPException(
            status_code=400, detail="Provide exactly one of html_content or text_content"
        )
    guests = _guests_for_email(db, payload.guest_ids)
    result = send_bulk(
        guests,
        subject=payload.subject,
        base_url=settings.base_url,
        content=lambda _guest: (payload.html_content, payload.text_content),
    )
    return {"success": True, **result.as_dict()}


# -------- Guest access --------


@app.post("/api/verify-token")
def api_verify_token(
    payload: TokenPayload, request: Request, db: Session = Depends(get_db)
):
    _enforce_rate_limit(request, "verify-token", VERIFY_TOKEN_LIMIT)
    if _is_admin_preview(payload.token, request, db):
        return {"valid": True, "guest": admin_preview_guest()}
    try:
        guest = lookup_guest(db, payload.token, lifetime=settings.token_lifetime)
    except AccessError as exc:
        raise _access_error(exc) from exc
    return {"valid": True, "guest": serialize_guest_access(guest)}


@app.post("/api/verify-phone")
def api_verify_contact(
    payload: ContactPayload, request: Request, db: Session = Depends(get_db)
):
    _enforce_rate_limit(request, "verify-contact", VERIFY_CONTACT_LIMIT)
    if _is_admin_preview(payload.token, request, db):
        return {"success": True, "is_first_time": False, "guest": admin_preview_guest()}
    try:
        result = verify_contact(
            db, payload.token, payload.contact_value, lifetime=settings.token_lifetime
        )
    except AccessError as exc:
        raise _access_error(exc) from exc
    return {
        "success": True,
        "kind": result.kind,
        "is_first_time": result.is_first_time,
        "guest": serialize_guest_access(result.guest),
    }


@app.post("/api/save-device")
def api_save_device(
    payload: DevicePayload, request: Request, db: Session = Depends(get_db)
):
    _enforce_rate_limit(request, "save-device", SAVE_DEVICE_LIMIT)
    if _is_admin_preview(payload.token, request, db):
        return {
            "success": True,
            "is_new_device": False,
            "device_count": 0,
            "max_devices_allowed": admin_preview_guest()["max_devices_allowed"],
        }
    try:
        result = save_device(
            db,
            payload.token,
            payload.contact_value,
            payload.device_fingerprint,
            lifetime=settings.token_lifetime,
        )
    except AccessError as exc:
        raise _access_error(exc) from exc
    return {
        "success": True,
        "is_new_device": result.is_new_device,
        "device_count": result.device_count,
        "max_devices_allowed": result.guest.max_devices_allowed,
    }


@app.post("/api/guest/preferences")
def api_submit_preferences(
    payload: PreferencesPayload, request: Request, db: Session = Depends(get_db)
):
    if _is_admin_preview(payload.token, request, db):
        return {"success": True, "preview": True}
    try:
        guest = lookup_guest(db, payload.token, lifetime=settings.token_lifetime)
    except AccessError as exc:
        raise _access_error(exc) from exc
    try:
        submit_preferences(
            db,
            guest,
            rsvp_status=payload.rsvp_status,
            attendees_per_event=payload.number_of_attendees_per_event,
            menu_preference=payload.menu_preference,
            dietary_restrictions=payload.dietary_restrictions,
            additional_info=payload.additional_info,
        )
    except (PreferencesAlreadySubmittedError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "preferences": _serialize_preferences(guest)}


@app.get("/api/guest/preferences")
def api_get_preferences(
    request: Request, token: str = Query(...), db: Session = Depends(get_db)
):
    if _is_admin_preview(token, request, db):
        return {"preferences": None}
    try:
        guest = lookup_guest(db, token, lifetime=settings.token_lifetime)
    except AccessError as exc:
        raise _access_error(exc) from exc
    return {"preferences": _serialize_preferences(guest)}


@app.get("/api/guest/{token}")
def api_get_guest(token: str, request: Request, db: Session = Depends(get_db)):
    if _is_admin_preview(token, request, db):
        return {"guest": admin_preview_guest()}
    try:
        guest = lookup_guest(db, token, lifetime=settings.token_lifetime)
    except AccessError as exc:
        raise _access_error(exc) from exc
    return {"guest": serialize_guest_access(guest)}


# -------- Health --------


@app.get("/api/health")
def api_health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        counts = {
            "admins": db.scalar(select(func.count()).select_from(Admin)) or 0,
            "events": db.scalar(select(func.count()).select_from(Event)) or 0,
            "guests": db.scalar(select(func.count()).select_from(Guest)) or 0,
        }
    except SQLAlchemyError as exc:
        logger.error("Health check failed: %s", exc)
        return JSONResponse(
            {"status": "unhealthy", "database": "unreachable"}, status_code=500
        )
    return {
        "status": "healthy",
        "version": APP_VERSION,
        "database": "connected",
        "counts": counts,
        "configured": {
            "jwt_secret": bool(settings.jwt_secret),
            "brevo_api_key": bool(settings.brevo_api_key),
            "base_url": bool(settings.base_url),
        },
    }
