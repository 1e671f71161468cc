from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.crm.audit import record_event
from app.crm.constants import ROLE_CLIENT_ADMIN, ROLE_SALES_REP
from app.crm.db import db_session
from app.crm.errors import PersistenceFailure
from app.crm.modules.customers.service import customer_to_dict, list_customers, update_customer_status
from app.crm.rbac import current_context, require_role
from app.crm.utils import json_object, normalize_text, text_field

bp = Blueprint("customers", __name__)


@bp.get("/customers")
@require_role(ROLE_CLIENT_ADMIN, ROLE_SALES_REP)
def customers_list():
    ctx = current_context()
    status = normalize_text(request.args.get("status")).lower() or None
    customers = list_customers(db_session(), ctx, status=status)
    return jsonify({"success": True, "customers": [customer_to_dict(c) for c in customers]})


@bp.patch("/customers/<int:customer_id>")
@require_role(ROLE_CLIENT_ADMIN, ROLE_SALES_REP)
def customers_update_status(customer_id: int):
    ctx = current_context()
    payload = json_object(request.get_json(silent=True))
    s = db_session()
    c, old_status = update_customer_status(s, ctx, customer_id, text_field(payload, "status"))
    if old_status != c.status:
        record_event(
            s,
            tenant_id=ctx.tenant_id,
            user_id=ctx.user_id,
            action="update_customer_status",
            resource_type="customer",
            resource_id=c.id,
            old_data={"status": old_status},
            new_data={"status": c.status},
        )
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.exception("Customer status update failed (customer_id=%s)", customer_id)
        raise PersistenceFailure() from e
    return jsonify({"success": True, "customer": customer_to_dict(c)})
