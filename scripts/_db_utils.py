from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from app.crm.tenancy import PRIVILEGED_KEY, install_tenant_guard


def create_script_engine(db_url: str):
    kwargs: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if not db_url.startswith("sqlite"):
        kwargs["pool_recycle"] = 1800
    engine = create_engine(db_url, **kwargs)
    if db_url.startswith("sqlite"):
        # Same SAVEPOINT recipe as app.crm.db.
        @event.listens_for(engine, "connect")
        def _do_connect(dbapi_connection, connection_record):  # type: ignore[no-redef]
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _do_begin(conn):  # type: ignore[no-redef]
            conn.exec_driver_sql("BEGIN")

    return engine


@contextmanager
def script_session(db_url: str):
    """Privileged session for maintenance scripts (sees every tenant)."""
    engine = create_script_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    install_tenant_guard(sm)
    s: Session = sm()
    s.info[PRIVILEGED_KEY] = True
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
