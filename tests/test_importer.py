from __future__ import annotations

import io

import pytest
from openpyxl import Workbook, load_workbook

from guestpass import crud
from guestpass.importer import (
    COLUMNS,
    ImportFileError,
    build_template,
    import_guests,
    is_spreadsheet_upload,
)


def _workbook(rows, *, header=True) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    if header:
        sheet.append(list(COLUMNS))
    for row in rows:
        sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_import_creates_guests_and_reports_rows(session):
    crud.create_guest(session, name="Existing", event_access=["reception"])
    session.commit()
    data = _workbook(
        [
            ("Meera", 9876543210, "Meera@Example.com", "All Events", 3),
            ("Ravi", None, None, "reception", None),
            ("Existing", None, None, "all-events", 1),
            (None, "12345678", None, "all-events", 1),
            ("Bad Access", None, None, "sangeet", 1),
            ("Bad Email", None, "not-an-email", "all", 1),
            ("Too Many", None, None, None, 40),
        ]
    )

    report = import_guests(session, data)
    session.commit()

    summary = report.as_dict()["summary"]
    assert summary == {"total": 7, "successful": 3, "errors": 3, "skipped": 1}
    assert [row["row"] for row in report.errors] == [5, 6, 7]
    assert report.skipped[0]["name"] == "Existing"

    meera = crud.get_guest_by_name(session, "Meera")
    assert meera.phone == "9876543210"
    assert meera.email == "meera@example.com"
    assert meera.event_access == ["mehndi", "wedding", "reception"]
    assert meera.max_devices_allowed == 3
    assert crud.get_guest_by_name(session, "Ravi").event_access == ["reception"]
    assert crud.get_guest_by_name(session, "Too Many").max_devices_allowed == 1


def test_import_without_header_row(session):
    report = import_guests(session, _workbook([("Anu", None, None, None, None)], header=False))
    assert len(report.success) == 1
    assert report.success[0]["row"] == 1


def test_unparseable_device_counts_fall_back_to_one(session):
    data = _workbook(
        [
            ("Anu", None, None, "all-events", "inf"),
            ("Dev", None, None, "all-events", "many"),
            ("Tara", None, None, "all-events", 99),
        ]
    )
    report = import_guests(session, data)
    assert len(report.success) == 3
    assert [g.max_devices_allowed for g in crud.list_guests(session)] == [1, 1, 1]


def test_import_rejects_unreadable_or_empty_files(session):
    with pytest.raises(ImportFileError):
        import_guests(session, b"not a spreadsheet")
    with pytest.raises(ImportFileError):
        import_guests(session, _workbook([]))


def test_upload_type_detection():
    assert is_spreadsheet_upload("guests.XLSX", None)
    assert is_spreadsheet_upload("upload", "application/vnd.ms-excel")
    assert not is_spreadsheet_upload("guests.csv", "text/csv")


def test_template_contains_header_and_examples():
    workbook = load_workbook(io.BytesIO(build_template()))
    rows = list(workbook.active.iter_rows(values_only=True))
    assert rows[0] == COLUMNS
    assert rows[1][0] == "John Doe"
    assert rows[2][3] == "reception-only"
