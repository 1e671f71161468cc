from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.crm.constants import ROLE_CLIENT_ADMIN, ROLE_SALES_REP
from app.crm.db import db_session
from app.crm.errors import NotFound, PersistenceFailure, ValidationFailed
from app.crm.modules.customers.service import get_customer
from app.crm.modules.workflows.service import (
    create_workflow,
    get_workflow_by_customer,
    list_workflows,
    update_workflow_status,
    workflow_to_dict,
)
from app.crm.rbac import current_context, require_role
from app.crm.utils import json_object, text_field

bp = Blueprint("workflows", __name__)


def _commit(s, what: str) -> None:
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.exception("Workflow %s failed", what)
        raise PersistenceFailure("Failed to save workflow") from e


@bp.get("/workflows")
@require_role(ROLE_CLIENT_ADMIN, ROLE_SALES_REP)
def workflows_list():
    ctx = current_context()
    return jsonify({"success": True, "workflows": [workflow_to_dict(w) for w in list_workflows(db_session(), ctx)]})


@bp.get("/customers/<int:customer_id>/workflow")
@require_role(ROLE_CLIENT_ADMIN, ROLE_SALES_REP)
def workflow_for_customer(customer_id: int):
    ctx = current_context()
    wf = get_workflow_by_customer(db_session(), ctx, customer_id)
    if wf is None:
        raise NotFound("Workflow not found")
    return jsonify({"success": True, "workflow": workflow_to_dict(wf)})


@bp.post("/customers/<int:customer_id>/workflow")
@require_role(ROLE_CLIENT_ADMIN, ROLE_SALES_REP)
def workflow_create(customer_id: int):
    ctx = current_context()
    s = db_session()
    get_customer(s, ctx, customer_id)  # visibility check
    wf = create_workflow(s, tenant_id=ctx.tenant_id, customer_id=customer_id)
    _commit(s, "create")
    return jsonify({"success": True, "workflow": workflow_to_dict(wf)}), 201


@bp.patch("/workflows/<int:workflow_id>")
@require_role(ROLE_CLIENT_ADMIN, ROLE_SALES_REP)
def workflow_update(workflow_id: int):
    ctx = current_context()
    payload = json_object(request.get_json(silent=True))
    step_data = payload.get("step_data")
    if step_data is not None and not isinstance(step_data, dict):
        raise ValidationFailed("step_data must be an object")
    s = db_session()
    wf = update_workflow_status(
        s,
        ctx,
        workflow_id,
        status=text_field(payload, "status"),
        current_step=text_field(payload, "current_step"),
        error_message=text_field(payload, "error_message"),
        step_data=step_data,
    )
    _commit(s, "update")
    return jsonify({"success": True, "workflow": workflow_to_dict(wf)})
