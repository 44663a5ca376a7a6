"""
Engine and sessions for the SQLite-backed local store.

The file only holds client-side state (user, token, active assessment id and
the local result history); the authoritative data lives in the backend.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import StorageConfig, get_settings
from .logging import get_logger
from .models import Base

logger = get_logger(__name__)


def make_engine_and_session(config: StorageConfig | None = None) -> tuple[Engine, sessionmaker]:
    """
    Engine plus session factory for ``config`` (``STORAGE_*`` by default).

    The ``local_storage`` table is created when missing, so a fresh file
    works without running the migrations first.

    Example:
        >>> _, SessionLocal = make_engine_and_session(StorageConfig(sqlite_path=":memory:"))
    """
    config = config or get_settings().storage
    engine = create_engine(config.get_connection_url(), **config.get_engine_options())
    logger.info(f"Local store at {config.sqlite_path}")
    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
