from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.crm.models import Base, TenantScoped
from app.crm.utils import utcnow


class SalesRep(TenantScoped, Base):
    """
    A sales representative inside one tenant.
    One row per (tenant, email); invitations reactivate an existing row.
    """

    __tablename__ = "sales_reps"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_sales_reps_tenant_email"),
        Index("idx_sales_reps_user_id", "user_id"),
        Index("idx_sales_reps_email", "email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_no: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
