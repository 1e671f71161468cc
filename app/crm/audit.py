from __future__ import annotations

from typing import Any

from flask import g, has_request_context, request
from sqlalchemy import event
from sqlalchemy.orm import Session

from app.crm.models import AuditLogEntry
from app.crm.utils import json_dumps_sorted


def record_event(
    s: Session,
    *,
    tenant_id: int,
    user_id: int | None,
    action: str,
    resource_type: str,
    resource_id: str | int | None = None,
    old_data: dict[str, Any] | None = None,
    new_data: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLogEntry:
    """
    Append-only audit entry helper.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    entry = AuditLogEntry(
        tenant_id=tenant_id,
        request_id=rid,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        old_data_json=json_dumps_sorted(old_data) if old_data else None,
        new_data_json=json_dumps_sorted(new_data) if new_data else None,
        ip_address=request.remote_addr if in_request else None,
        user_agent=(request.headers.get("User-Agent") or "")[:512] if in_request else None,
    )
    s.add(entry)
    return entry


def list_audit_logs(s: Session, *, tenant_id: int, limit: int = 100) -> list[AuditLogEntry]:
    return (
        s.query(AuditLogEntry)
        .filter(AuditLogEntry.tenant_id == tenant_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )


@event.listens_for(Session, "before_flush")
def _audit_log_is_append_only(session: Session, flush_context, instances) -> None:
    for obj in list(session.dirty) + list(session.deleted):
        if isinstance(obj, AuditLogEntry) and (obj in session.deleted or session.is_modified(obj)):
            raise RuntimeError("audit_logs is append-only")
