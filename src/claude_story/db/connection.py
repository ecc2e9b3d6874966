"""
Database connection management for Claude Story.

Each project has its own SQLite store, so engines are created per database
path and cached for the lifetime of the process.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from claude_story.config import settings
from claude_story.models.db import Base

logger = logging.getLogger(__name__)

# database path -> (engine, session factory); entries are never evicted
_engines: dict[str, tuple[Engine, sessionmaker]] = {}
_engines_lock = Lock()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(db_path: Path, busy_timeout: Optional[float] = None) -> Engine:
    """
    Create a SQLite engine for a project store.

    Args:
        db_path: Path to the SQLite database file
        busy_timeout: Seconds a writer waits for the database lock

    Returns:
        Engine: A new SQLAlchemy engine
    """
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={
            "check_same_thread": False,  # Timer threads share the engine
            "timeout": busy_timeout or settings.db_busy_timeout,
        },
        pool_pre_ping=True,
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def init_db(engine: Engine) -> None:
    """
    Create tables and indexes if they don't exist.

    Safe to call on every startup.
    """
    Base.metadata.create_all(bind=engine)


def get_session_factory(db_path: Path) -> sessionmaker:
    """
    Get the cached session factory for a database, creating it on first use.

    The schema is created when the engine is first opened.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        sessionmaker bound to the database's engine
    """
    key = str(Path(db_path).resolve())

    with _engines_lock:
        cached = _engines.get(key)
        if cached is not None:
            return cached[1]

        Path(key).parent.mkdir(parents=True, exist_ok=True)
        engine = create_store_engine(Path(key))
        init_db(engine)
        factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,  # Returned rows are used after the session closes
            bind=engine,
        )
        _engines[key] = (engine, factory)
        logger.debug(f"Opened conversation store: {key}")
        return factory


def dispose_engines() -> None:
    """Dispose all cached engines (used at shutdown and by tests)."""
    with _engines_lock:
        for engine, _ in _engines.values():
            engine.dispose()
        _engines.clear()


@contextmanager
def db_session(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Commits on success and rolls back on any exception.

    Yields:
        Session: A SQLAlchemy session

    Example:
        >>> with db_session(factory) as db:
        >>>     db.query(Conversation).count()
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

