"""Engine, session factory and transactional scope for the schedule store."""

import logging
import os
import shutil
import warnings
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from . import config  # noqa: F401  loads .env before the URL is resolved
from .exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

FALLBACK_DIR = Path.home() / ".clinic_scheduling"
SQLITE_BUSY_TIMEOUT_MS = 5000


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def _resolve_default_db_url() -> str:
    url = os.environ.get("CLINIC_SCHEDULING_DB_URL")
    if url:
        return url
    path = Path.cwd() / "data" / "clinic_scheduling.db"
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def _sqlite_file(url: str) -> Path | None:
    """Database file behind a SQLite URL; None for other backends and in-memory stores."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return None
    if not parsed.database or parsed.database == ":memory:":
        return None
    return Path(parsed.database)


def _ensure_writable_sqlite_url(url: str) -> str:
    """Point a read-only SQLite file at a user-local copy."""
    db_path = _sqlite_file(url)
    if db_path is None:
        return url
    probe = db_path if db_path.exists() else db_path.parent
    if os.access(probe, os.W_OK):
        return url

    FALLBACK_DIR.mkdir(parents=True, exist_ok=True)
    target = FALLBACK_DIR / db_path.name
    if db_path.exists() and not target.exists():
        try:
            shutil.copy2(db_path, target)
        except OSError:
            logger.warning("Could not copy %s; starting from an empty schedule store", db_path)
    warnings.warn(
        f"Database path {db_path} not writable; using fallback {target}",
        RuntimeWarning,
        stacklevel=2,
    )
    return f"sqlite:///{target}"


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def create_sqlite_engine(database_url: str | None = None) -> Engine:
    """Create an engine and verify the connection."""
    db_url = _ensure_writable_sqlite_url(database_url or _resolve_default_db_url())
    try:
        engine = create_engine(db_url, echo=False, future=True)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _configure_sqlite)
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise DatabaseConnectionError("Failed to connect to the database.") from exc
    logger.debug("Connected to %s", engine.url.render_as_string(hide_password=True))
    return engine


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True)


engine = create_sqlite_engine()
SessionLocal = make_session_factory(engine)


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    finally:
        session.close()
