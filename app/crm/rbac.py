from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g
from sqlalchemy.exc import SQLAlchemyError

from app.crm.db import db_session
from app.crm.errors import AuthenticationRequired, Forbidden, PersistenceFailure
from app.crm.models import User
from app.crm.tenancy import RequestContext, bind_tenant, resolve_context


def current_context() -> RequestContext:
    ctx: RequestContext | None = getattr(g, "ctx", None)
    if ctx is None:
        raise AuthenticationRequired()
    return ctx


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Resolve the caller's RequestContext (provisioning an administrator's
    tenant on first use), check its role, and bind the request session to
    its tenant. The context is exposed as g.ctx.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                raise AuthenticationRequired()

            s = db_session()
            try:
                ctx = resolve_context(s, user)
                s.commit()
            except SQLAlchemyError as e:
                s.rollback()
                current_app.logger.exception("Tenant resolution failed (user_id=%s)", user.id)
                raise PersistenceFailure("Failed to provision tenant") from e

            if ctx.role not in roles:
                current_app.logger.warning(
                    "Forbidden: role=%s required=%s user_id=%s request_id=%s",
                    ctx.role,
                    ",".join(roles),
                    ctx.user_id,
                    getattr(g, "request_id", None),
                )
                raise Forbidden("Insufficient permissions")
            if ctx.tenant_id is None:
                raise Forbidden("No tenant assigned to this account")

            bind_tenant(s, ctx.tenant_id)
            g.ctx = ctx
            return fn(*args, **kwargs)

        return wrapped

    return decorator
