from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column, relationship

from app.crm.utils import utcnow


class Base(DeclarativeBase):
    pass


class TenantScoped:
    """
    Mixin for rows owned by exactly one tenant.

    Every SELECT against a subclass is filtered to the session's bound tenant
    (see app.crm.tenancy).
    """

    @declared_attr
    def tenant_id(cls) -> Mapped[int]:
        return mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)


class Tenant(Base):
    """A client organization. Created lazily for administrators without one."""

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    google_sheet_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set when the tenant was provisioned for an administrator; unique so a
    # concurrent second provisioning attempt fails at the database.
    provisioned_for_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)  # stored lower-cased
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)  # NULL until invite accepted
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # e.g. {"role": "sales_rep"}
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    invite_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    invited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    invite_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    role_assignments: Mapped[list["RoleAssignment"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RoleAssignment.id",
    )


class RoleAssignment(Base):
    """(user, role, tenant) triple. Drives every authorization decision."""

    __tablename__ = "role_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "role", "tenant_id", name="uq_role_assignments_user_role_tenant"),
        Index("idx_role_assignments_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)  # client_admin | sales_rep
    tenant_id: Mapped[int | None] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user: Mapped[User] = relationship(back_populates="role_assignments")


class AuditLogEntry(TenantScoped, Base):
    """
    Append-only audit trail entry.
    Existing rows are never updated or deleted (enforced in app.crm.audit).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "invite_sales_rep"
    resource_type: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "sales_rep"
    resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    old_data_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_data_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
import app.crm.modules.sales_reps.models  # noqa: E402,F401
import app.crm.modules.customers.models  # noqa: E402,F401
import app.crm.modules.workflows.models  # noqa: E402,F401
