from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from app.crm.constants import CSV_IMPORT_SOURCE, CUSTOMER_STATUSES, DEFAULT_CUSTOMER_STATUS
from app.crm.modules.lead_import.columns import NOT_FOUND, ColumnMap
from app.crm.modules.lead_import.utils import normalize_phone, split_full_name
from app.crm.utils import normalize_email

UNKNOWN_NAME = "Unknown"


@dataclass(frozen=True)
class CustomerDraft:
    """A validated row, not yet persisted. Ownership is assigned at write time."""

    row_number: int
    first_name: str
    last_name: str
    email: str
    phone_no: str
    source: str
    notes: str | None
    status: str
    # False when the row had no status value and the default was applied.
    status_from_file: bool = True


@dataclass(frozen=True)
class RowError:
    row_number: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.message}"


def _clean(value: str | None) -> str:
    return (value or "").strip().strip('"').strip()


def _get(row: Sequence[str], idx: int) -> str:
    if idx == NOT_FOUND or idx >= len(row):
        return ""
    return _clean(row[idx])


def validate_row(row: Sequence[str], columns: ColumnMap, row_number: int) -> CustomerDraft | RowError | None:
    """
    Turn one data row into a CustomerDraft, a RowError, or None for an empty row.

    row_number is the 1-based display row (the header is row 1).
    """
    if all(not _clean(v) for v in row):
        return None

    first_name, last_name = split_full_name(_get(row, columns.full_name))
    explicit_first = _get(row, columns.first_name)
    explicit_last = _get(row, columns.last_name)
    if explicit_first:
        first_name = explicit_first
    if explicit_last:
        last_name = explicit_last

    email = _get(row, columns.email)
    phone_no = normalize_phone(_get(row, columns.phone))
    source = _get(row, columns.source) or CSV_IMPORT_SOURCE
    notes = _get(row, columns.notes) or None
    raw_status = _get(row, columns.status).lower()
    status = raw_status or DEFAULT_CUSTOMER_STATUS

    if not email or "@" not in email:
        return RowError(row_number, "Invalid or missing email")
    if not first_name and not last_name:
        return RowError(row_number, "Missing name")
    if status not in CUSTOMER_STATUSES:
        return RowError(row_number, f"Invalid status '{status}'")

    return CustomerDraft(
        row_number=row_number,
        first_name=first_name or UNKNOWN_NAME,
        last_name=last_name or UNKNOWN_NAME,
        email=normalize_email(email),
        phone_no=phone_no,
        source=source,
        notes=notes,
        status=status,
        status_from_file=bool(raw_status),
    )
