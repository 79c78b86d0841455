"""Database for the coordination event log: engine, sessions, schema bootstrap."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from agent_coordination.core.config import get_settings
from agent_coordination.core.logger import get_logger


Base = declarative_base()

logger = get_logger("agent_coordination.storage.db")


def sqlite_database_path(database_url: str) -> Optional[Path]:
    """Return the file behind a SQLite URL, or None for other backends and in-memory databases."""

    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    database_url = get_settings().database_url
    kwargs: Dict[str, Any] = {"pool_pre_ping": True}
    if make_url(database_url).get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(database_url, **kwargs)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def check_database() -> Tuple[bool, Optional[str]]:
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("event_database_unreachable", error=str(exc))
        return False, str(exc)
    return True, None


def load_models() -> None:
    """Import ORM models so Base metadata contains all mapped tables."""

    import agent_coordination.storage.models  # noqa: F401


def create_schema() -> None:
    """Create the event tables, and the directory of a file-backed SQLite database."""

    database_file = sqlite_database_path(get_settings().database_url)
    if database_file is not None and not database_file.parent.exists():
        database_file.parent.mkdir(parents=True, exist_ok=True)
        logger.info("event_database_directory_created", path=str(database_file.parent))

    load_models()
    Base.metadata.create_all(get_engine())
