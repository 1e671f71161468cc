from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.crm.audit import record_event
from app.crm.db import db_session, session_scope
from app.crm.errors import AuthenticationRequired, CrmError, PersistenceFailure
from app.crm.modules.onboarding.service import OnboardRequest, onboard_customer
from app.crm.modules.workflows.service import create_workflow
from app.crm.post_actions import PostActions
from app.crm.tenancy import privileged
from app.crm.utils import json_object

bp = Blueprint("onboarding", __name__)


def _check_webhook_secret() -> None:
    expected = current_app.config.get("WEBHOOK_SECRET") or ""
    if not expected:
        current_app.logger.error("Onboard webhook: WEBHOOK_SECRET is not configured")
        raise CrmError("Server misconfiguration")
    provided = request.headers.get("X-Webhook-Secret") or ""
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationRequired("Invalid webhook secret")


@bp.route("/customer-onboard", methods=["POST", "OPTIONS"])
def customer_onboard():
    if request.method == "OPTIONS":
        return "", 200

    req = OnboardRequest.from_payload(json_object(request.get_json(silent=True)))
    _check_webhook_secret()
    app = current_app._get_current_object()  # type: ignore[attr-defined]

    s = db_session()
    with privileged(s):
        customer = onboard_customer(s, req)
        try:
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            app.logger.exception("Onboard webhook commit failed")
            raise PersistenceFailure("Failed to create customer") from e

    tenant_id, customer_id = customer.tenant_id, customer.id

    def _open_workflow() -> None:
        with session_scope(app, tenant_id=tenant_id) as s2:
            create_workflow(s2, tenant_id=tenant_id, customer_id=customer_id)

    def _audit() -> None:
        with session_scope(app, tenant_id=tenant_id) as s2:
            record_event(
                s2,
                tenant_id=tenant_id,
                user_id=None,
                action="onboard_customer",
                resource_type="customer",
                resource_id=customer_id,
                new_data={
                    "email": customer.email,
                    "sales_rep_user_id": customer.sales_rep_user_id,
                    "source": customer.source,
                    "status": customer.status,
                },
            )

    post = PostActions("onboard_customer")
    post.add("workflow", _open_workflow)
    post.add("audit", _audit)
    post.run()

    return jsonify({"success": True, "customer_id": customer_id, "message": "Customer onboarded successfully"})
