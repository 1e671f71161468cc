from flask import Blueprint, jsonify, request

from app.crm.audit import list_audit_logs
from app.crm.constants import ROLE_CLIENT_ADMIN, ROLE_SALES_REP
from app.crm.db import db_session
from app.crm.models import AuditLogEntry, Tenant
from app.crm.rbac import current_context, require_role
from app.crm.utils import json_loads_or_none, parse_limit

bp = Blueprint("admin", __name__)


def _audit_to_dict(e: AuditLogEntry) -> dict:
    return {
        "id": e.id,
        "created_at": e.created_at.isoformat() if e.created_at else None,
        "request_id": e.request_id,
        "user_id": e.user_id,
        "action": e.action,
        "resource_type": e.resource_type,
        "resource_id": e.resource_id,
        "old_data": json_loads_or_none(e.old_data_json),
        "new_data": json_loads_or_none(e.new_data_json),
        "ip_address": e.ip_address,
    }


@bp.get("/me")
@require_role(ROLE_CLIENT_ADMIN, ROLE_SALES_REP)
def me():
    ctx = current_context()
    tenant = db_session().get(Tenant, ctx.tenant_id)
    return jsonify(
        {
            "success": True,
            "user_id": ctx.user_id,
            "email": ctx.email,
            "role": ctx.role,
            "tenant_id": ctx.tenant_id,
            "tenant_name": tenant.name if tenant else None,
        }
    )


@bp.get("/audit-logs")
@require_role(ROLE_CLIENT_ADMIN)
def audit_logs_list():
    ctx = current_context()
    entries = list_audit_logs(db_session(), tenant_id=ctx.tenant_id, limit=parse_limit(request.args))
    return jsonify({"success": True, "audit_logs": [_audit_to_dict(e) for e in entries]})
