from __future__ import annotations

import json
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.crm.constants import WORKFLOW_INITIAL_STEP, WORKFLOW_STATUSES, WORKFLOW_TERMINAL_STATUSES
from app.crm.errors import Conflict, NotFound, ValidationFailed
from app.crm.modules.customers.models import Customer
from app.crm.modules.workflows.models import Workflow
from app.crm.tenancy import RequestContext
from app.crm.utils import json_loads_or_none, normalize_text, utcnow


def create_workflow(s: Session, *, tenant_id: int, customer_id: int) -> Workflow:
    """Open the onboarding workflow for a customer. One per customer."""
    customer = (
        s.query(Customer)
        .filter(Customer.tenant_id == tenant_id, Customer.id == customer_id)
        .one_or_none()
    )
    if customer is None:
        raise NotFound("Customer not found")
    try:
        with s.begin_nested():
            wf = Workflow(
                tenant_id=tenant_id,
                customer_id=customer_id,
                status="pending",
                current_step=WORKFLOW_INITIAL_STEP,
            )
            s.add(wf)
            s.flush()
    except IntegrityError as e:
        raise Conflict("Workflow already exists for this customer") from e
    return wf


def get_workflow_by_customer(s: Session, ctx: RequestContext, customer_id: int) -> Workflow | None:
    q = (
        s.query(Workflow)
        .join(Customer, Customer.id == Workflow.customer_id)
        .filter(Workflow.tenant_id == ctx.tenant_id, Workflow.customer_id == customer_id)
    )
    if not ctx.is_admin:
        q = q.filter(Customer.sales_rep_user_id == ctx.user_id)
    return q.one_or_none()


def get_workflow(s: Session, ctx: RequestContext, workflow_id: int) -> Workflow:
    q = (
        s.query(Workflow)
        .join(Customer, Customer.id == Workflow.customer_id)
        .filter(Workflow.tenant_id == ctx.tenant_id, Workflow.id == workflow_id)
    )
    if not ctx.is_admin:
        q = q.filter(Customer.sales_rep_user_id == ctx.user_id)
    wf = q.one_or_none()
    if wf is None:
        raise NotFound("Workflow not found")
    return wf


def update_workflow_status(
    s: Session,
    ctx: RequestContext,
    workflow_id: int,
    *,
    status: str | None,
    current_step: str | None = None,
    error_message: str | None = None,
    step_data: dict[str, Any] | None = None,
) -> Workflow:
    new_status = normalize_text(status).lower()
    if new_status not in WORKFLOW_STATUSES:
        raise ValidationFailed(f"Invalid status '{new_status}'. Must be one of: {', '.join(WORKFLOW_STATUSES)}")

    wf = get_workflow(s, ctx, workflow_id)
    if wf.status in WORKFLOW_TERMINAL_STATUSES:
        raise Conflict(f"Workflow is already {wf.status}")

    now = utcnow()
    wf.status = new_status
    wf.last_updated = now
    if normalize_text(current_step):
        wf.current_step = normalize_text(current_step)
    if normalize_text(error_message):
        wf.error_message = normalize_text(error_message)
    if step_data is not None:
        wf.step_data_json = json.dumps(step_data, sort_keys=True, default=str)
    if new_status == "completed":
        wf.completed_at = now
    s.flush()
    return wf


def list_workflows(s: Session, ctx: RequestContext) -> list[Workflow]:
    q = (
        s.query(Workflow)
        .join(Customer, Customer.id == Workflow.customer_id)
        .filter(Workflow.tenant_id == ctx.tenant_id)
    )
    if not ctx.is_admin:
        q = q.filter(Customer.sales_rep_user_id == ctx.user_id)
    return q.order_by(Workflow.created_at.desc(), Workflow.id.desc()).all()


def workflow_to_dict(wf: Workflow) -> dict[str, Any]:
    return {
        "id": wf.id,
        "tenant_id": wf.tenant_id,
        "customer_id": wf.customer_id,
        "status": wf.status,
        "current_step": wf.current_step,
        "step_data": json_loads_or_none(wf.step_data_json),
        "error_message": wf.error_message,
        "started_at": wf.started_at.isoformat() if wf.started_at else None,
        "completed_at": wf.completed_at.isoformat() if wf.completed_at else None,
        "last_updated": wf.last_updated.isoformat() if wf.last_updated else None,
        "created_at": wf.created_at.isoformat() if wf.created_at else None,
    }
