"""
Persistence port for client-side state.

Values are JSON-serialized and each write replaces the stored value
wholesale. A value that cannot be parsed is logged and read back as absent.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy.orm import sessionmaker

from .config import Settings, get_settings
from .db import make_engine_and_session
from .logging import get_logger
from .repositories import KeyValueRepo
from .uow import UnitOfWork

logger = get_logger(__name__)

USER_KEY = "usuario"
TOKEN_KEY = "token"
REFRESH_TOKEN_KEY = "refresh_token"
ASSESSMENT_ID_KEY = "id_autoevaluacion"
LAST_RESULT_KEY = "ultimo_resultado"
HISTORY_KEY = "historial_local"


class KeyValueStore(ABC):
    """``load(key) -> value | None`` and ``save(key, value)`` over raw text."""

    @abstractmethod
    def get_raw(self, key: str) -> str | None: ...

    @abstractmethod
    def set_raw(self, key: str, value: str) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    def load(self, key: str, default: Any = None) -> Any:
        raw = self.get_raw(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Stored value for '{key}' is not valid JSON; ignoring it", exc_info=e)
            return default

    def save(self, key: str, value: Any) -> None:
        self.set_raw(key, json.dumps(value, ensure_ascii=False))

    def remove(self, *keys: str) -> None:
        for key in keys:
            self.delete(key)


class MemoryStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get_raw(self, key: str) -> str | None:
        return self._data.get(key)

    def set_raw(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqlKeyValueStore(KeyValueStore):
    """Store backed by the ``local_storage`` table."""

    def __init__(self, SessionLocal: sessionmaker):
        self.uow = UnitOfWork(SessionLocal)

    def get_raw(self, key: str) -> str | None:
        with self.uow.read() as s:
            return KeyValueRepo(s).read(key)

    def set_raw(self, key: str, value: str) -> None:
        with self.uow.begin() as s:
            KeyValueRepo(s).upsert(key, value)

    def delete(self, key: str) -> None:
        with self.uow.begin() as s:
            KeyValueRepo(s).remove(key)

    def keys(self) -> list[str]:
        with self.uow.read() as s:
            return KeyValueRepo(s).keys()


def build_store(settings: Settings | None = None) -> KeyValueStore:
    settings = settings or get_settings()
    config = settings.storage
    if config.backend == "memory":
        logger.info("Using in-memory local store")
        return MemoryStore()

    logger.info(f"Using SQLite local store at {config.sqlite_path}")
    _, SessionLocal = make_engine_and_session(config)
    return SqlKeyValueStore(SessionLocal)
