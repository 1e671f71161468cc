from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crm.constants import CUSTOMER_STATUSES, DEFAULT_CUSTOMER_STATUS, WEBHOOK_SOURCE
from app.crm.errors import NotFound, PersistenceFailure, ValidationFailed
from app.crm.modules.customers.models import Customer
from app.crm.modules.lead_import.utils import normalize_phone
from app.crm.modules.sales_reps.service import find_onboarding_rep
from app.crm.utils import normalize_email, text_field

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("first_name", "last_name", "email", "phone_no", "sales_rep_email")


@dataclass(frozen=True)
class OnboardRequest:
    first_name: str
    last_name: str
    email: str
    phone_no: str
    sales_rep_email: str
    source: str
    notes: str | None
    status: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "OnboardRequest":
        values = {k: text_field(payload, k) for k in REQUIRED_FIELDS}
        if not all(values.values()):
            raise ValidationFailed("Missing required fields")
        status = text_field(payload, "status").lower() or DEFAULT_CUSTOMER_STATUS
        if status not in CUSTOMER_STATUSES:
            raise ValidationFailed(f"Invalid status '{status}'")
        return cls(
            first_name=values["first_name"],
            last_name=values["last_name"],
            email=normalize_email(values["email"]),
            phone_no=normalize_phone(values["phone_no"]),
            sales_rep_email=normalize_email(values["sales_rep_email"]),
            source=text_field(payload, "source") or WEBHOOK_SOURCE,
            notes=text_field(payload, "notes") or None,
            status=status,
        )


def onboard_customer(s: Session, req: OnboardRequest) -> Customer:
    """
    Create a customer for the representative named in the payload.

    Runs in a privileged session: the representative is looked up across
    tenants and the customer lands in that representative's tenant. Create
    only; an existing customer with the same email is not merged.
    """
    rep =find_onboarding_rep(s, req.sales_rep_email)
    if rep is None:
        logger.warning("Onboard webhook: sales rep not found (email=%s)", req.sales_rep_email)
        raise NotFound("Sales representative not found")

    customer = Customer(
        tenant_id=rep.tenant_id,
        sales_rep_user_id=rep.user_id,
        sales_rep_id=rep.id,
        first_name=req.first_name,
        last_name=req.last_name,
        email=req.email,
        phone_no=req.phone_no,
        source=req.source,
        notes=req.notes,
        status=req.status,
    )
    try:
        with s.begin_nested():
            s.add(customer)
            s.flush()
    except SQLAlchemyError as e:
        logger.exception("Onboard webhook: customer creation failed (rep_id=%s email=%s)", rep.id, req.email)
        raise PersistenceFailure("Failed to create customer") from e

    logger.info("Customer onboarded: id=%s tenant_id=%s rep_id=%s", customer.id, customer.tenant_id, rep.id)
    return customer
