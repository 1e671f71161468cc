from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.crm.constants import ROLE_SALES_REP
from app.crm.errors import Forbidden, ValidationFailed
from app.crm.identity import IdentityProviderError, LocalIdentityProvider
from app.crm.models import RoleAssignment, User
from app.crm.modules.lead_import.utils import normalize_phone
from app.crm.modules.sales_reps.models import SalesRep
from app.crm.tenancy import RequestContext
from app.crm.utils import normalize_email, text_field, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InviteRequest:
    first_name: str
    last_name: str
    email: str
    phone_no: str | None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "InviteRequest":
        first_name = text_field(payload, "first_name")
        last_name = text_field(payload, "last_name")
        email = normalize_email(text_field(payload, "email"))
        if not first_name or not last_name or not email:
            raise ValidationFailed("Missing required fields: first_name, last_name, email")
        if "@" not in email:
            raise ValidationFailed("Invalid email")
        return cls(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone_no=normalize_phone(text_field(payload, "phone_no")) or None,
        )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone_no": self.phone_no,
        }


@dataclass(frozen=True)
class InviteResult:
    user_id: int
    created_user: bool
    sales_rep_id: int
    sales_rep_created: bool


def resolve_identity(identity: LocalIdentityProvider, req: InviteRequest, *, tenant_id: int) -> tuple[User, bool]:
    """
    Find or create the invitee's identity.

    Order: existing identity -> invitation -> direct creation with a random
    temporary password -> one last lookup (a concurrent request may have
    created it). Returns (user, created).
    """
    user = identity.find_user_by_email(req.email)
    if user is not None:
        return user, False

    metadata = {
        "role": ROLE_SALES_REP,
        "first_name": req.first_name,
        "last_name": req.last_name,
        "tenant_id": tenant_id,
    }
    try:
        return identity.invite_user_by_email(req.email, display_name=req.display_name, metadata=metadata), True
    except IdentityProviderError as e:
        logger.warning("Invite failed for %s; falling back to direct creation: %s", req.email, e)

    try:
        user = identity.create_user(
            req.email,
            password=secrets.token_urlsafe(24),
            display_name=req.display_name,
            metadata=metadata,
        )
        return user, True
    except IdentityProviderError as e:
        logger.warning("Create user failed for %s; retrying lookup: %s", req.email, e)

    user = identity.find_user_by_email(req.email)
    if user is None:
        raise ValidationFailed("Could not create or find user for this email")
    return user, False


def ensure_role_assignment(s: Session, *, user_id: int, role: str, tenant_id: int) -> RoleAssignment:
    q = s.query(RoleAssignment).filter(
        RoleAssignment.user_id == user_id,
        RoleAssignment.role == role,
        RoleAssignment.tenant_id == tenant_id,
    )
    existing = q.one_or_none()
    if existing is not None:
        return existing
    try:
        with s.begin_nested():
            a = RoleAssignment(user_id=user_id, role=role, tenant_id=tenant_id)
            s.add(a)
            s.flush()
        return a
    except IntegrityError:
        # Concurrent invite attached it first.
        existing = q.one_or_none()
        if existing is None:
            raise
        return existing


def find_sales_rep(s: Session, *, tenant_id: int, email: str) -> SalesRep | None:
    return (
        s.query(SalesRep)
        .filter(SalesRep.tenant_id == tenant_id, func.lower(SalesRep.email) == normalize_email(email))
        .one_or_none()
    )


def _apply_rep_fields(rep: SalesRep, user: User, req: InviteRequest) -> None:
    rep.user_id = user.id
    rep.first_name = req.first_name
    rep.last_name = req.last_name
    rep.phone_no = req.phone_no
    rep.status = "active"
    rep.updated_at = utcnow()


def upsert_sales_rep(s: Session, *, tenant_id: int, user: User, req: InviteRequest) -> tuple[SalesRep, bool]:
    """Insert or update-and-reactivate the (tenant, email) representative row."""
    rep = find_sales_rep(s, tenant_id=tenant_id, email=req.email)
    if rep is not None:
        _apply_rep_fields(rep, user, req)
        s.flush()
        return rep, False
    try:
        with s.begin_nested():
            rep = SalesRep(
                tenant_id=tenant_id,
                user_id=user.id,
                first_name=req.first_name,
                last_name=req.last_name,
                email=req.email,
                phone_no=req.phone_no,
                status="active",
            )
            s.add(rep)
            s.flush()
        return rep, True
    except IntegrityError:
        rep = find_sales_rep(s, tenant_id=tenant_id, email=req.email)
        if rep is None:
            raise
        _apply_rep_fields(rep, user, req)
        s.flush()
        return rep, False


def invite_sales_rep(
    s: Session,
    ctx: RequestContext,
    payload: dict[str, Any],
    identity: LocalIdentityProvider,
) -> tuple[InviteResult, InviteRequest]:
    """
    Invite (or re-invite) a sales representative into the caller's tenant.
    The caller commits and then runs the best-effort post-actions.
    """
    if not ctx.is_admin or ctx.tenant_id is None:
        raise Forbidden("Only client admins can invite sales reps")

    req = InviteRequest.from_payload(payload)
    user, created_user = resolve_identity(identity, req, tenant_id=ctx.tenant_id)
    ensure_role_assignment(s, user_id=user.id, role=ROLE_SALES_REP, tenant_id=ctx.tenant_id)
    rep, rep_created = upsert_sales_rep(s, tenant_id=ctx.tenant_id, user=user, req=req)

    logger.info(
        "Invite sales rep: tenant_id=%s user_id=%s created_user=%s rep_id=%s rep_created=%s",
        ctx.tenant_id,
        user.id,
        created_user,
        rep.id,
        rep_created,
    )
    return InviteResult(user.id, created_user, rep.id, rep_created), req


def list_sales_reps(s: Session, ctx: RequestContext) -> list[SalesRep]:
    return (
        s.query(SalesRep)
        .filter(SalesRep.tenant_id == ctx.tenant_id)
        .order_by(SalesRep.last_name.asc(), SalesRep.first_name.asc(), SalesRep.id.asc())
        .all()
    )


def find_onboarding_rep(s: Session, email: str) -> SalesRep | None:
    """
    Case-insensitive lookup across tenants (privileged sessions only).
    Prefers an active row, then the most recently updated one.
    """
    return (
        s.query(SalesRep)
        .filter(func.lower(SalesRep.email) == normalize_email(email))
        .order_by(
            case((SalesRep.status == "active", 0), else_=1),
            SalesRep.updated_at.desc(),
            SalesRep.id.desc(),
        )
        .first()
    )


def sales_rep_to_dict(rep: SalesRep) -> dict[str, Any]:
    return {
        "id": rep.id,
        "tenant_id": rep.tenant_id,
        "user_id": rep.user_id,
        "first_name": rep.first_name,
        "last_name": rep.last_name,
        "email": rep.email,
        "phone_no": rep.phone_no,
        "status": rep.status,
        "created_at": rep.created_at.isoformat() if rep.created_at else None,
        "updated_at": rep.updated_at.isoformat() if rep.updated_at else None,
    }
