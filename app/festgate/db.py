from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, g
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker


def _connect_args(db_url: str, timeout_seconds: float) -> dict[str, object]:
    """Driver-level limits so a hung database turns into an error instead of a stuck gate."""
    if db_url.startswith("sqlite"):
        # Lock wait for concurrent log appends; also lets the test client share the file.
        return {"timeout": timeout_seconds, "check_same_thread": False}
    if db_url.startswith("postgres"):
        ms = int(timeout_seconds * 1000)
        return {"connect_timeout": max(1, int(timeout_seconds)), "options": f"-c statement_timeout={ms}"}
    return {}


def build_sessionmaker(db_url: str, *, timeout_seconds: float = 5.0, echo_checkout=None) -> sessionmaker:
    is_postgres = db_url.startswith("postgres")
    engine_kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
        "connect_args": _connect_args(db_url, timeout_seconds),
    }
    if is_postgres:
        engine_kwargs.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": max(1, int(timeout_seconds)),
            }
        )
    engine = create_engine(db_url, **engine_kwargs)

    if db_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    if echo_checkout is not None:
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            echo_checkout("DB connection checkout from pool")

    return sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def init_db(app: Flask) -> None:
    debug_hook = app.logger.debug if app.config.get("ENV") != "production" else None
    sm = build_sessionmaker(
        app.config["DATABASE_URL"],
        timeout_seconds=float(app.config.get("CREDENTIAL_TIMEOUT_SECONDS") or 5.0),
        echo_checkout=debug_hook,
    )
    app.extensions["sqlalchemy_engine"] = sm.kw["bind"]
    app.extensions["sqlalchemy_sessionmaker"] = sm


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers.
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
        finally:
            g.db_session = None


@contextmanager
def transaction(sm: sessionmaker) -> Generator[Session, None, None]:
    """
    Yields a fresh session and commits/rolls back as one unit.
    """
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and tests.
    """
    with transaction(app.extensions["sqlalchemy_sessionmaker"]) as s:
        yield s
