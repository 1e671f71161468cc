from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

NOT_FOUND = -1

# Most specific first: short variations ("name", "contact") match loosely.
FIELD_VARIATIONS: dict[str, tuple[str, ...]] = {
    "full_name": (
        "full_name",
        "full name",
        "fullname",
        "customer_name",
        "customer name",
        "contact_name",
        "contact name",
        "name",
    ),
    "first_name": ("firstname", "first_name", "fname", "first name"),
    "last_name": ("lastname", "last_name", "lname", "last name"),
    "email": ("email", "email_address", "mail"),
    "phone": ("phoneno", "phone_no", "phone", "mobile", "contact"),
    "source": ("source", "lead_source", "origin"),
    "notes": ("notes", "note", "remarks", "comments", "description"),
    "status": ("status", "lead_status", "stage"),
}


@dataclass(frozen=True)
class ColumnMap:
    full_name: int = NOT_FOUND
    first_name: int = NOT_FOUND
    last_name: int = NOT_FOUND
    email: int = NOT_FOUND
    phone: int = NOT_FOUND
    source: int = NOT_FOUND
    notes: int = NOT_FOUND
    status: int = NOT_FOUND

    def found(self) -> dict[str, int]:
        return {k: v for k, v in self.__dict__.items() if v != NOT_FOUND}


def normalize_headers(headers: Sequence[str]) -> list[str]:
    return [(h or "").strip().strip('"').strip().lower() for h in headers]


def find_column(headers: Sequence[str], variations: Sequence[str]) -> int:
    """
    Index of the first header matching a variation, or NOT_FOUND.

    Variations are tried in priority order; for each one, headers are scanned
    left to right and a header matches on equality, when it contains the
    variation, or when the variation contains it. Expects normalized headers.
    """
    for variation in variations:
        for idx, header in enumerate(headers):
            if not header:
                continue
            if header == variation or variation in header or header in variation:
                return idx
    return NOT_FOUND


def _contains_variation(header: str, variations: Sequence[str]) -> bool:
    return any(header == v or v in header for v in variations)


def infer_columns(headers: Sequence[str]) -> ColumnMap:
    normalized = normalize_headers(headers)
    found = {field: find_column(normalized, variations) for field, variations in FIELD_VARIATIONS.items()}
    full = found["full_name"]
    for part in ("first_name", "last_name"):
        if full == NOT_FOUND or found[part] != full:
            continue
        # "First Name" contains "name" (keep it as first_name); a bare "Name"
        # is only contained in "firstname" (keep it as full_name).
        if _contains_variation(normalized[full], FIELD_VARIATIONS[part]):
            found["full_name"] = NOT_FOUND
        else:
            found[part] = NOT_FOUND
    return ColumnMap(**found)
