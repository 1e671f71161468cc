from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, g
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from app.crm.tenancy import PRIVILEGED_KEY, install_tenant_guard


def _enable_sqlite_savepoints(engine) -> None:
    # pysqlite defers BEGIN on its own; take over so SAVEPOINT (begin_nested) works.
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):  # type: ignore[no-redef]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):  # type: ignore[no-redef]
        conn.exec_driver_sql("BEGIN")


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    is_postgres = db_url.startswith("postgres")
    engine_kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if is_postgres:
        engine_kwargs.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
            }
        )
    engine = create_engine(db_url, **engine_kwargs)
    if db_url.startswith("sqlite"):
        _enable_sqlite_savepoints(engine)
    if app.config.get("ENV") != "production":
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout from pool")
    sm = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    install_tenant_guard(sm)
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sm


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers.

    Sessions start unbound: tenant-scoped tables read as empty until the
    request's tenant is bound (see app.crm.tenancy.bind_tenant).
    """
    if hasattr(g, "db_session") and g.db_session is not None:
        return g.db_session
    if app is None:
        from flask import current_app

        app = current_app
    sm = app.extensions["sqlalchemy_sessionmaker"]
    g.db_session = sm()  # type: ignore[assignment]
    return g.db_session


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        try:
            s.close()
        except Exception:
            pass
        g.db_session = None


@contextmanager
def session_scope(app: Flask, *, tenant_id: int | None = None) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts, tests and post-commit actions: yields a
    session and commits/rolls back.

    Without tenant_id the session is privileged (sees every tenant).
    """
    from app.crm.tenancy import bind_tenant

    sm = app.extensions["sqlalchemy_sessionmaker"]
    s: Session = sm()
    if tenant_id is None:
        s.info[PRIVILEGED_KEY] = True
    else:
        bind_tenant(s, tenant_id)
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
