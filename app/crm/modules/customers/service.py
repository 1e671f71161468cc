from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from app.crm.constants import CUSTOMER_STATUSES
from app.crm.errors import NotFound, ValidationFailed
from app.crm.modules.customers.models import Customer
from app.crm.tenancy import RequestContext
from app.crm.utils import normalize_text, utcnow


def _visible_customers(s: Session, ctx: RequestContext):
    q = s.query(Customer).filter(Customer.tenant_id == ctx.tenant_id)
    if not ctx.is_admin:
        q = q.filter(Customer.sales_rep_user_id == ctx.user_id)
    return q


def list_customers(s: Session, ctx: RequestContext, *, status: str | None = None) -> list[Customer]:
    """Administrators see the whole tenant; representatives see their own leads."""
    q = _visible_customers(s, ctx)
    if status:
        q = q.filter(Customer.status == status)
    return q.order_by(Customer.created_at.desc(), Customer.id.desc()).all()


def get_customer(s: Session, ctx: RequestContext, customer_id: int) -> Customer:
    c = _visible_customers(s, ctx).filter(Customer.id == customer_id).one_or_none()
    if c is None:
        raise NotFound("Customer not found")
    return c


def update_customer_status(s: Session, ctx: RequestContext, customer_id: int, status: str | None) -> tuple[Customer, str]:
    """Returns (customer, previous_status). The caller commits."""
    new_status = normalize_text(status).lower()
    if new_status not in CUSTOMER_STATUSES:
        raise ValidationFailed(f"Invalid status '{new_status}'. Must be one of: {', '.join(CUSTOMER_STATUSES)}")
    c = get_customer(s, ctx, customer_id)
    old_status = c.status
    c.status = new_status
    c.updated_at = utcnow()
    s.flush()
    return c, old_status


def customer_to_dict(c: Customer) -> dict[str, Any]:
    return {
        "id": c.id,
        "tenant_id": c.tenant_id,
        "sales_rep_user_id": c.sales_rep_user_id,
        "sales_rep_id": c.sales_rep_id,
        "first_name": c.first_name,
        "last_name": c.last_name,
        "email": c.email,
        "phone_no": c.phone_no,
        "source": c.source,
        "notes": c.notes,
        "status": c.status,
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "updated_at": c.updated_at.isoformat() if c.updated_at else None,
    }
