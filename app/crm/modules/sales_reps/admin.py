from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.crm.audit import record_event
from app.crm.constants import ROLE_CLIENT_ADMIN, ROLE_SALES_REP
from app.crm.db import db_session, session_scope
from app.crm.errors import PersistenceFailure
from app.crm.identity import identity_provider
from app.crm.modules.sales_reps.service import invite_sales_rep, list_sales_reps, sales_rep_to_dict
from app.crm.post_actions import PostActions
from app.crm.rbac import current_context, require_role
from app.crm.utils import json_object

bp = Blueprint("sales_reps", __name__)


@bp.get("/sales-reps")
@require_role(ROLE_CLIENT_ADMIN)
def sales_reps_list():
    ctx = current_context()
    reps = list_sales_reps(db_session(), ctx)
    return jsonify({"success": True, "sales_reps": [sales_rep_to_dict(r) for r in reps]})


@bp.post("/sales-reps/invite")
@require_role(ROLE_CLIENT_ADMIN)
def sales_reps_invite():
    ctx = current_context()
    payload = json_object(request.get_json(silent=True))
    app = current_app._get_current_object()  # type: ignore[attr-defined]

    s = db_session()
    result, req = invite_sales_rep(s, ctx, payload, identity_provider(s, app))
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        app.logger.exception("Invite sales rep commit failed (tenant_id=%s email=%s)", ctx.tenant_id, req.email)
        raise PersistenceFailure("Failed to save sales rep") from e

    def _audit() -> None:
        with session_scope(app, tenant_id=ctx.tenant_id) as s2:
            record_event(
                s2,
                tenant_id=ctx.tenant_id,
                user_id=ctx.user_id,
                action="invite_sales_rep",
                resource_type="sales_rep",
                resource_id=result.user_id,
                new_data=req.as_dict(),
            )

    def _sync_profile() -> None:
        with session_scope(app) as s2:
            identity_provider(s2, app).update_user(
                result.user_id,
                display_name=req.display_name,
                metadata={"role": ROLE_SALES_REP, "first_name": req.first_name, "last_name": req.last_name},
            )

    post = PostActions("invite_sales_rep")
    post.add("audit", _audit)
    post.add("profile_sync", _sync_profile)
    post.run()

    return jsonify(
        {
            "success": True,
            "createdUser": result.created_user,
            "user_id": result.user_id,
            "sales_rep_id": result.sales_rep_id,
        }
    )
