"""
Release phase for the CRM.

  1. Refuse to run without DATABASE_URL, or against SQLite when ENV=production.
  2. alembic upgrade head.
  3. On Postgres, confirm every tenant-isolation policy is in place; a
     database without them would rely on the ORM guard alone.
  4. Seed the first client administrator and its tenant (idempotent).

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from sqlalchemy import create_engine, text

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TENANT_TABLES = ("sales_reps", "customers", "workflows")
AUDIT_POLICIES = ("audit_logs_select", "audit_logs_insert")


def expected_policies() -> set[str]:
    return {f"{t}_tenant_isolation" for t in TENANT_TABLES} | set(AUDIT_POLICIES)


def missing_policies(present: set[str]) -> list[str]:
    return sorted(expected_policies() - present)


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against SQLite in production. Set DATABASE_URL to Postgres.")
    return db_url


def _migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def verify_tenant_policies(db_url: str) -> None:
    if not db_url.startswith("postgres"):
        print("Row-level security check skipped (not Postgres).", flush=True)
        return
    engine = create_engine(db_url, future=True)
    try:
        with engine.connect() as conn:
            rows = conn.execute(text("SELECT policyname FROM pg_policies WHERE schemaname = current_schema()"))
            missing = missing_policies({r[0] for r in rows})
    finally:
        engine.dispose()
    if missing:
        raise RuntimeError(f"Row-level security policies missing after migration: {', '.join(missing)}")
    print(f"Row-level security policies present ({len(expected_policies())}).", flush=True)


def run_release() -> None:
    db_url = _database_url()
    print("=== CRM release start ===", flush=True)

    print("Running Alembic migrations...", flush=True)
    _migrate(db_url)
    verify_tenant_policies(db_url)

    print("Seeding client admin (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("=== CRM release done ===", flush=True)


if __name__ == "__main__":
    run_release()
