"""Spreadsheet import of guest lists."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.orm import Session

from .crud import MAX_DEVICES, MIN_DEVICES, create_guest, get_guest_by_name
from .utils import expand_event_access, is_valid_email, normalize_email

COLUMNS = ("name", "phone", "email", "eventAccess", "maxDevicesAllowed")
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ACCEPTED_MEDIA_TYPES = {XLSX_MEDIA_TYPE, "application/vnd.ms-excel"}
TEMPLATE_FILENAME = "guest-import-template.xlsx"

ACCESS_ALIASES = {
    "all-events": "all-events",
    "all events": "all-events",
    "all": "all-events",
    "reception-only": "reception-only",
    "reception only": "reception-only",
    "reception": "reception-only",
}

TEMPLATE_ROWS = [
    ("John Doe", "+1234567890", "john.doe@example.com", "all-events", 2),
    ("Jane Smith", "+0987654321", "jane.smith@example.com", "reception-only", 1),
]


class ImportFileError(ValueError):
    """Raised when the uploaded file cannot be read as a guest list."""


@dataclass
class ImportReport:
    total: int = 0
    success: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "success": True,
            "summary": {
                "total": self.total,
                "successful": len(self.success),
                "errors": len(self.errors),
                "skipped": len(self.skipped),
            },
            "results": {
                "success": self.success,
                "errors": self.errors,
                "skipped": self.skipped,
            },
        }


def is_spreadsheet_upload(filename: str | None, content_type: str | None) -> bool:
    name = (filename or "").lower()
    return name.endswith((".xlsx", ".xls")) or content_type in ACCEPTED_MEDIA_TYPES


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _is_header(row: tuple) -> bool:
    return bool(row) and _cell_text(row[0]).lower() == "name"


def read_rows(data: bytes) -> list[tuple[int, dict[str, str]]]:
    """Return ``(row_number, values)`` pairs from the first worksheet."""
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as exc:
        raise ImportFileError("Excel file is empty or invalid format") from exc
    try:
        sheet = workbook.worksheets[0]
        rows: list[tuple[int, dict[str, str]]] = []
        for number, row in enumerate(sheet.iter_rows(values_only=True), start=1):
            if number == 1 and _is_header(row):
                continue
            cells = [_cell_text(value) for value in (row or ())][: len(COLUMNS)]
            if not any(cells):
                continue
            cells += [""] * (len(COLUMNS) - len(cells))
            rows.append((number, dict(zip(COLUMNS, cells))))
    finally:
        workbook.close()
    if not rows:
        raise ImportFileError("Excel file is empty or invalid format")
    return rows


def _parse_devices(raw: str) -> int:
    try:
        parsed = int(float(raw))
    except (ValueError, OverflowError):
        return MIN_DEVICES
    return parsed if MIN_DEVICES <= parsed <= MAX_DEVICES else MIN_DEVICES


def import_guests(session: Session, data: bytes) -> ImportReport:
    """Create guests from an uploaded workbook.

    Rows whose name already exists are skipped; invalid rows are reported
    and do not stop the import.
    """
    rows = read_rows(data)
    report = ImportReport(total=len(rows))
    for number, row in rows:
        name = row["name"]
        if not name:
            report.errors.append({"row": number, "name": "(empty)", "error": "Name is required"})
            continue

        preset = "all-events"
        if row["eventAccess"]:
            preset = ACCESS_ALIASES.get(row["eventAccess"].lower(), "")
            if not preset:
                report.errors.append(
                    {
                        "row": number,
                        "name": name,
                        "error": 'Event access must be "all-events" or "reception-only"',
                    }
                )
                continue

        email = normalize_email(row["email"]) or None
        if email and not is_valid_email(email):
            report.errors.append({"row": number, "name": name, "error": "Invalid email format"})
            continue

        if get_guest_by_name(session, name):
            report.skipped.append(
                {"row": number, "name": name, "reason": "Guest with this name already exists"}
            )
            continue

        guest = create_guest(
            session,
            name=name,
            phone=row["phone"] or None,
            email=email,
            event_access=expand_event_access(preset),
            max_devices_allowed=_parse_devices(row["maxDevicesAllowed"]),
        )
        report.success.append(
            {"row": number, "name": name, "token": guest.token, "event_access": preset}
        )
    return report


def build_template() -> bytes:
    """Return an example workbook admins can fill in."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Guests"
    sheet.append(list(COLUMNS))
    for row in TEMPLATE_ROWS:
        sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
