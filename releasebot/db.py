"""Cache index database.

The layer cache keeps its index in a small SQL database (SQLite unless
RELEASEBOT_DB_URL says otherwise). Builds run on worker threads, so the
SQLite connection is opened without the same-thread check and every store
call uses its own short-lived session.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Base class for the cache index models."""

    pass


def _sqlite_engine_args(db_url: str) -> dict[str, Any]:
    connect_args: dict[str, Any] = {"check_same_thread": False}
    db_path = db_url.removeprefix("sqlite:///")
    if db_path and db_path != db_url and db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return connect_args


def open_cache_index(db_url: str) -> sessionmaker[Session]:
    """Open the cache index, creating its tables on first use.

    Args:
        db_url: SQLAlchemy database URL. The parent directory of a SQLite
            file is created if missing.

    Returns:
        Session factory bound to the index.
    """
    # Register the cache models before creating tables
    from releasebot.cache import models as cache_models  # noqa: F401

    connect_args = _sqlite_engine_args(db_url) if db_url.startswith("sqlite") else {}
    engine: Engine = create_engine(db_url, connect_args=connect_args, echo=False)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """Commit on success, roll back on error, always close."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "get_session",
    "open_cache_index",
]
