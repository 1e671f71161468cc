"""
Central constants for the CRM application.
"""
from __future__ import annotations

ROLE_CLIENT_ADMIN = "client_admin"
ROLE_SALES_REP = "sales_rep"
ROLES = (ROLE_CLIENT_ADMIN, ROLE_SALES_REP)

CUSTOMER_STATUSES = ("pending", "active", "won", "lost")
DEFAULT_CUSTOMER_STATUS = "pending"

SALES_REP_STATUSES = ("active", "inactive")

WORKFLOW_STATUSES = ("pending", "active", "completed", "failed")
WORKFLOW_TERMINAL_STATUSES = frozenset({"completed", "failed"})
WORKFLOW_INITIAL_STEP = "initial"

CSV_IMPORT_SOURCE = "CSV Import"
WEBHOOK_SOURCE = "Webhook"

# Storage prefix for archived CSV uploads
CSV_ARCHIVE_PREFIX = "csv-imports"

DEFAULT_TENANT_NAME = "My Company"
