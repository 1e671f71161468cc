import json
import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.crm.constants import DEFAULT_TENANT_NAME, ROLE_CLIENT_ADMIN  # noqa: E402
from app.crm.models import Base, User  # noqa: E402
from app.crm.tenancy import ensure_tenant  # noqa: E402
from scripts._db_utils import create_script_engine, script_session  # noqa: E402


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the first client administrator (and its tenant) in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    company_name = (os.environ.get("ADMIN_COMPANY_NAME") or DEFAULT_TENANT_NAME).strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///crm.db").strip()

    with script_session(db_url) as s:
        u = s.query(User).filter(User.email == admin_email).one_or_none()
        if not u:
            u = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                display_name="Administrator",
                metadata_json=json.dumps({"role": ROLE_CLIENT_ADMIN, "company_name": company_name}, sort_keys=True),
                is_active=True,
            )
            s.add(u)
            s.flush()
            print(f"Created admin user {admin_email}", flush=True)
        tenant_id = ensure_tenant(s, u, name=company_name)
        print(f"Admin {admin_email} -> tenant_id={tenant_id}", flush=True)


def main() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///crm.db").strip()
    if db_url.startswith("sqlite"):
        # Local development shortcut; Postgres goes through alembic (scripts/release.py).
        engine = create_script_engine(db_url)
        Base.metadata.create_all(bind=engine)
        engine.dispose()
    seed_only(database_url=db_url)


if __name__ == "__main__":
    main()
