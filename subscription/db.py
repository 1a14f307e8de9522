"""Engine, session and schema setup for the subscription tables."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from alembic.config import Config as AlembicConfig
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.engine.url import URL
from sqlalchemy.orm import Session, sessionmaker

from alembic import command
from config import APP_ENV, DATABASE_ECHO, DATABASE_URL, ROOT_DIR
from observability import get_logger, log_event

from .models import Base

SessionFactory = Callable[[], Session]

_LOGGER = get_logger("trackhub.subscription.db")

# Write-once guards are single conditional UPDATEs; READ COMMITTED re-checks
# the WHERE clause after a concurrent writer commits, so only one wins.
POSTGRES_ISOLATION_LEVEL = "READ COMMITTED"


def _prepare_sqlite_file(url: URL) -> None:
    database = url.database or ""
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def _engine_options(url: URL) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": DATABASE_ECHO}
    backend = url.get_backend_name()
    if backend == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
    if backend == "postgresql":
        options["isolation_level"] = POSTGRES_ISOLATION_LEVEL
    return options


def build_session_factory(database_url: str) -> tuple[Engine, SessionFactory]:
    """
    Engine plus session factory for one database.

    Sessions keep attribute values after commit: settlement and binding hand
    loaded rows to post-commit side effects.
    """

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        _prepare_sqlite_file(url)
    engine = create_engine(url, **_engine_options(url))
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


ENGINE, SessionLocal = build_session_factory(DATABASE_URL)


def missing_subscription_tables(engine: Engine) -> list[str]:
    existing = set(inspect(engine).get_table_names())
    return sorted(name for name in Base.metadata.tables if name not in existing)


def _upgrade_schema(database_url: str, revision: str = "head") -> None:
    config_path = Path(ROOT_DIR).resolve() / "alembic.ini"
    if not config_path.exists():
        raise RuntimeError(f"missing alembic.ini: {config_path}")
    alembic_cfg = AlembicConfig(str(config_path))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(alembic_cfg, revision)


def init_subscription_db(engine: Engine | None = None) -> None:
    """
    Create the subscription schema.

    With an explicit engine the tables come straight from model metadata.
    Otherwise the configured database is migrated with Alembic; production
    deployments must point at PostgreSQL.
    """

    if engine is not None:
        Base.metadata.create_all(bind=engine)
        return
    backend = make_url(DATABASE_URL).get_backend_name()
    if str(APP_ENV or "").strip().lower() in {"prod", "production"} and backend != "postgresql":
        raise RuntimeError("DATABASE_URL must be PostgreSQL in production")
    _upgrade_schema(DATABASE_URL)
    log_event(_LOGGER, logging.INFO, "subscription.db.migrated", backend=backend)


@contextmanager
def session_scope(session_factory: SessionFactory | None = None) -> Iterator[Session]:
    """One transaction: commit on success, roll back and re-raise on any error."""
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        log_event(
            _LOGGER,
            logging.WARNING,
            "subscription.db.rolled_back",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        raise
    finally:
        session.close()
