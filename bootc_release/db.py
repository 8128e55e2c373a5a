"""Release history database plumbing.

Engine creation, sessions and the declarative base of the history
tables. The default backend is a SQLite file under the user's data
directory; its parent directory is created on first use.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from bootc_release.config import get_settings

_SQLITE_FILE_PREFIX = "sqlite:///"


class Base(DeclarativeBase):
    """Declarative base of the history tables."""

    pass


def sqlite_path(db_url: str) -> Path | None:
    """Return the database file of a file-backed SQLite URL, else None."""
    if not db_url.startswith(_SQLITE_FILE_PREFIX):
        return None
    location = db_url[len(_SQLITE_FILE_PREFIX) :]
    if not location or location == ":memory:":
        return None
    return Path(location).expanduser()


def get_engine(db_url: str | None = None) -> Any:
    """Create an engine for the history database.

    Args:
        db_url: Database URL; the configured one when omitted.
    """
    db_url = db_url or get_settings().db_url

    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        path = sqlite_path(db_url)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)

    return create_engine(db_url, connect_args=connect_args, echo=False)


def get_session_factory(engine: Any | None = None) -> sessionmaker[Session]:
    """Return a session factory bound to engine (or the configured one)."""
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Yield a session that commits on exit and rolls back on error."""
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Any | None = None) -> None:
    """Create the history tables that do not exist yet."""
    # Models register themselves on Base when imported
    from bootc_release.builds import models as builds_models  # noqa: F401

    Base.metadata.create_all(bind=engine if engine is not None else get_engine())


def open_history(db_url: str | None = None) -> sessionmaker[Session]:
    """Prepare the history database and return a session factory.

    Args:
        db_url: Database URL; the configured one when omitted.
    """
    engine = get_engine(db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "open_history",
    "sqlite_path",
]
