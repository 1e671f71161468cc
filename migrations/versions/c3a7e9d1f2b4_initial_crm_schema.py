"""initial crm schema (tenants, roles, sales reps, customers, workflows, audit log)

Revision ID: c3a7e9d1f2b4
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "c3a7e9d1f2b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TENANT_TABLES = ("sales_reps", "customers", "workflows")

_TENANT_MATCH = (
    "current_setting('app.privileged', true) = 'on' "
    "OR tenant_id::text = current_setting('app.current_tenant_id', true)"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("invite_token_hash", sa.String(length=64), nullable=True, unique=True),
        sa.Column("invited_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("invite_accepted_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("google_sheet_id", sa.Text(), nullable=True),
        sa.Column(
            "provisioned_for_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        *_timestamps(),
    )

    op.create_table(
        "role_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "role", "tenant_id", name="uq_role_assignments_user_role_tenant"),
    )
    op.create_index("idx_role_assignments_user_id", "role_assignments", ["user_id"])

    op.create_table(
        "sales_reps",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("phone_no", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "email", name="uq_sales_reps_tenant_email"),
    )
    op.create_index("ix_sales_reps_tenant_id", "sales_reps", ["tenant_id"])
    op.create_index("idx_sales_reps_user_id", "sales_reps", ["user_id"])
    op.create_index("idx_sales_reps_email", "sales_reps", ["email"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sales_rep_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sales_rep_id", sa.Integer(), sa.ForeignKey("sales_reps.id", ondelete="SET NULL"), nullable=True),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("phone_no", sa.Text(), nullable=False, server_default=""),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        *_timestamps(),
        sa.UniqueConstraint("sales_rep_user_id", "email", name="uq_customers_rep_email"),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])
    op.create_index("idx_customers_status", "customers", ["status"])
    op.create_index("idx_customers_created_at", "customers", ["created_at"])

    op.create_table(
        "workflows",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "customer_id",
            sa.Integer(),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("current_step", sa.Text(), nullable=True),
        sa.Column("step_data_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
    )
    op.create_index("ix_workflows_tenant_id", "workflows", ["tenant_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("resource_type", sa.String(length=128), nullable=False),
        sa.Column("resource_id", sa.String(length=128), nullable=True),
        sa.Column("old_data_json", sa.Text(), nullable=True),
        sa.Column("new_data_json", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("idx_audit_logs_tenant_created", "audit_logs", ["tenant_id", "created_at"])

    # Row-level security (Postgres only). The app sets app.current_tenant_id /
    # app.privileged at the start of every transaction.
    if op.get_bind().dialect.name != "postgresql":
        return

    for table in TENANT_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(f"CREATE POLICY {table}_tenant_isolation ON {table} USING ({_TENANT_MATCH}) WITH CHECK ({_TENANT_MATCH})")

    # audit_logs: read and append only; no policy exists for UPDATE or DELETE.
    op.execute("ALTER TABLE audit_logs ENABLE ROW LEVEL SECURITY")
    op.execute("ALTER TABLE audit_logs FORCE ROW LEVEL SECURITY")
    op.execute(f"CREATE POLICY audit_logs_select ON audit_logs FOR SELECT USING ({_TENANT_MATCH})")
    op.execute(f"CREATE POLICY audit_logs_insert ON audit_logs FOR INSERT WITH CHECK ({_TENANT_MATCH})")


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP POLICY IF EXISTS audit_logs_insert ON audit_logs")
        op.execute("DROP POLICY IF EXISTS audit_logs_select ON audit_logs")
        for table in TENANT_TABLES:
            op.execute(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table}")

    op.drop_table("audit_logs")
    op.drop_table("workflows")
    op.drop_table("customers")
    op.drop_table("sales_reps")
    op.drop_index("idx_role_assignments_user_id", table_name="role_assignments")
    op.drop_table("role_assignments")
    op.drop_table("tenants")
    op.drop_table("users")
