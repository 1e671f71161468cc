"""
Tenant and role resolution, plus tenant isolation for ORM sessions.

Every request works against an explicit RequestContext (user, role, tenant).
Isolation is enforced twice:

- In the ORM: a do_orm_execute hook filters every SELECT on a TenantScoped
  model to the session's bound tenant (an unbound session sees nothing), and
  a before_flush hook stamps/validates tenant_id on writes.
- In PostgreSQL: row-level security policies (see migrations) read the
  app.current_tenant_id / app.privileged settings applied at the start of
  each transaction.

Privileged sessions (webhook, scripts, post-commit actions) opt out.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import event, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import ORMExecuteState, Session, sessionmaker, with_loader_criteria

from app.crm.constants import DEFAULT_TENANT_NAME, ROLE_CLIENT_ADMIN, ROLE_SALES_REP
from app.crm.errors import Forbidden
from app.crm.models import RoleAssignment, Tenant, TenantScoped, User

logger = logging.getLogger(__name__)

TENANT_KEY = "tenant_id"
PRIVILEGED_KEY = "privileged"


@dataclass(frozen=True)
class RequestContext:
    user_id: int
    email: str
    role: str | None
    tenant_id: int | None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_CLIENT_ADMIN

    @property
    def is_sales_rep(self) -> bool:
        return self.role == ROLE_SALES_REP


# ---------- Session isolation ----------


def _apply_pg_settings(connection, info: dict) -> None:
    tenant_id = info.get(TENANT_KEY)
    connection.execute(
        text("SELECT set_config('app.current_tenant_id', :tenant_id, true), set_config('app.privileged', :privileged, true)"),
        {
            "tenant_id": "" if tenant_id is None else str(tenant_id),
            "privileged": "on" if info.get(PRIVILEGED_KEY) else "off",
        },
    )


def _scope_selects(state: ORMExecuteState) -> None:
    if not state.is_select or state.is_column_load or state.is_relationship_load:
        return
    if state.execution_options.get("skip_tenant_scope"):
        return
    info = state.session.info
    if info.get(PRIVILEGED_KEY):
        return
    tenant_id = info.get(TENANT_KEY)
    if tenant_id is None:
        # Fail closed: tenant_id is NOT NULL, so this matches nothing.
        criteria = with_loader_criteria(TenantScoped, lambda cls: cls.tenant_id.is_(None), include_aliases=True)
    else:
        criteria = with_loader_criteria(TenantScoped, lambda cls: cls.tenant_id == tenant_id, include_aliases=True)
    state.statement = state.statement.options(criteria)


def _check_writes(session: Session, flush_context, instances) -> None:
    if session.info.get(PRIVILEGED_KEY):
        return
    tenant_id = session.info.get(TENANT_KEY)
    for obj in list(session.new) + list(session.dirty):
        if not isinstance(obj, TenantScoped):
            continue
        if tenant_id is None:
            raise Forbidden("No tenant bound for this write")
        if obj.tenant_id is None:
            obj.tenant_id = tenant_id
        elif obj.tenant_id != tenant_id:
            logger.error(
                "Cross-tenant write rejected: %s tenant_id=%s bound=%s",
                type(obj).__name__,
                obj.tenant_id,
                tenant_id,
            )
            raise Forbidden("Cross-tenant write rejected")


def _after_begin(session: Session, transaction, connection) -> None:
    if connection.dialect.name == "postgresql":
        _apply_pg_settings(connection, session.info)


def install_tenant_guard(sm: sessionmaker) -> None:
    event.listen(sm, "do_orm_execute", _scope_selects)
    event.listen(sm, "before_flush", _check_writes)
    event.listen(sm, "after_begin", _after_begin)


def _refresh_pg_settings(s: Session) -> None:
    if s.in_transaction():
        conn = s.connection()
        if conn.dialect.name == "postgresql":
            _apply_pg_settings(conn, s.info)


def bind_tenant(s: Session, tenant_id: int | None) -> None:
    s.info[TENANT_KEY] = tenant_id
    _refresh_pg_settings(s)


@contextmanager
def privileged(s: Session) -> Generator[Session, None, None]:
    """Temporarily lift tenant isolation (service-role operations only)."""
    prev = s.info.get(PRIVILEGED_KEY, False)
    s.info[PRIVILEGED_KEY] = True
    _refresh_pg_settings(s)
    try:
        yield s
    finally:
        s.info[PRIVILEGED_KEY] = prev
        _refresh_pg_settings(s)


# ---------- Role / tenant resolution ----------


def intended_role(user: User) -> str:
    """Role an identity signed up (or was invited) for; anything but sales_rep is an admin."""
    try:
        meta = json.loads(user.metadata_json) if user.metadata_json else {}
    except json.JSONDecodeError:
        meta = {}
    return ROLE_SALES_REP if (meta or {}).get("role") == ROLE_SALES_REP else ROLE_CLIENT_ADMIN


def _find_assignment(s: Session, user_id: int) -> RoleAssignment | None:
    # Multiple rows per user are possible; the first one wins.
    return (
        s.query(RoleAssignment)
        .filter(RoleAssignment.user_id == user_id)
        .order_by(RoleAssignment.id.asc())
        .first()
    )


def _admin_tenant_id(s: Session, user_id: int) -> int | None:
    a = (
        s.query(RoleAssignment)
        .filter(
            RoleAssignment.user_id == user_id,
            RoleAssignment.role == ROLE_CLIENT_ADMIN,
            RoleAssignment.tenant_id.isnot(None),
        )
        .order_by(RoleAssignment.id.asc())
        .first()
    )
    return a.tenant_id if a else None


def ensure_tenant(s: Session, user: User, *, name: str | None = None, google_sheet_id: str | None = None) -> int:
    """
    Return the administrator's tenant id, provisioning one if none exists.

    Safe under concurrent duplicate calls: tenants.provisioned_for_user_id and
    the assignment triple are unique, so the losing attempt's SAVEPOINT rolls
    back and the winner's tenant is re-read.
    """
    tenant_id = _admin_tenant_id(s, user.id)
    if tenant_id is not None:
        return tenant_id

    try:
        meta = json.loads(user.metadata_json) if user.metadata_json else {}
    except json.JSONDecodeError:
        meta = {}
    tenant_name = (name or meta.get("company_name") or user.display_name or DEFAULT_TENANT_NAME).strip()

    try:
        with s.begin_nested():  # SAVEPOINT for idempotency
            t = Tenant(name=tenant_name, google_sheet_id=google_sheet_id, provisioned_for_user_id=user.id)
            s.add(t)
            s.flush()
            pending = (
                s.query(RoleAssignment)
                .filter(
                    RoleAssignment.user_id == user.id,
                    RoleAssignment.role == ROLE_CLIENT_ADMIN,
                    RoleAssignment.tenant_id.is_(None),
                )
                .first()
            )
            if pending is not None:
                pending.tenant_id = t.id
            else:
                s.add(RoleAssignment(user_id=user.id, role=ROLE_CLIENT_ADMIN, tenant_id=t.id))
            s.flush()  # Force unique constraint check
        logger.info("Provisioned tenant id=%s for user_id=%s", t.id, user.id)
        return t.id
    except IntegrityError:
        # Another request provisioned first; use its tenant.
        logger.warning("Tenant provisioning race for user_id=%s; re-reading", user.id)
        tenant_id = _admin_tenant_id(s, user.id)
        if tenant_id is not None:
            return tenant_id
        t = s.query(Tenant).filter(Tenant.provisioned_for_user_id == user.id).one_or_none()
        if t is not None:
            return t.id
        raise


def resolve_context(s: Session, user: User, *, provision: bool = True) -> RequestContext:
    a = _find_assignment(s, user.id)
    role = a.role if a else intended_role(user)
    tenant_id = a.tenant_id if a else None
    if tenant_id is None and role == ROLE_CLIENT_ADMIN and provision:
        tenant_id = ensure_tenant(s, user)
    return RequestContext(user_id=user.id, email=user.email, role=role, tenant_id=tenant_id)
