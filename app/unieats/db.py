from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.orm import Session, sessionmaker

# Tables whose absence means `alembic upgrade head` has not been run.
REQUIRED_TABLES = (
    "users",
    "audit_events",
    "platform_settings",
    "cafeterias",
    "cafeteria_applications",
    "menu_items",
    "orders",
    "order_items",
    "inventory_items",
    "support_tickets",
    "chat_conversations",
    "chat_messages",
    "notifications",
)


def _engine_options(db_url: str) -> dict[str, object]:
    opts: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        opts.update(pool_size=5, max_overflow=10, pool_timeout=30, pool_recycle=1800)
    return opts


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **_engine_options(db_url))

    if engine.dialect.name == "sqlite":
        # SQLite ignores ON DELETE rules unless asked per connection.
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def missing_tables(app: Flask) -> list[str]:
    insp = inspect(app.extensions["sqlalchemy_engine"])
    return [t for t in REQUIRED_TABLES if not insp.has_table(t)]


def db_session() -> Session:
    """
    The session for the current request, opened on first use and closed on teardown.
    """
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        s = current_app.extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """Session for scripts and tests; commits on success, rolls back on error."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
