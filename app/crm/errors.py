"""
Error taxonomy for request handlers.

Services raise these; the app factory turns them into JSON responses of the
shape {"success": false, "message": ...}. Row-level CSV problems are not
exceptions (see lead_import.validation.RowError).
"""
from __future__ import annotations

from typing import Any


class CrmError(Exception):
    status_code = 500
    default_message = "Unexpected server error"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "message": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class ValidationFailed(CrmError):
    status_code = 400
    default_message = "Missing required fields"


class AuthenticationRequired(CrmError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(CrmError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(CrmError):
    status_code = 404
    default_message = "Not found"


class Conflict(CrmError):
    status_code = 409
    default_message = "Conflict with existing record"


class PersistenceFailure(CrmError):
    """Data-layer failure unrelated to input validity. Detail is logged, not returned."""

    status_code = 500
    default_message = "Failed to save changes"


class ImportFailed(CrmError):
    """No row of an import survived validation."""

    status_code = 400
    default_message = "No data rows found in CSV file"

    def __init__(self, message: str | None = None, *, errors: list[str] | None = None):
        self.errors = list(errors or [])
        super().__init__(message, details={"errors": self.errors})


class RateLimited(CrmError):
    status_code = 429
    default_message = "Too many attempts. Please wait 5 minutes."
