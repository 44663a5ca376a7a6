from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..domain.schemas import AuthPayload, ResultRecord
from ..infrastructure.logging import get_logger
from ..infrastructure.storage import (
    ASSESSMENT_ID_KEY,
    HISTORY_KEY,
    LAST_RESULT_KEY,
    REFRESH_TOKEN_KEY,
    TOKEN_KEY,
    USER_KEY,
    KeyValueStore,
)

logger = get_logger(__name__)


def parse_started_at(raw: str | None) -> datetime:
    """Naive datetime for sorting; missing or unparseable dates sort last."""
    if not raw:
        return datetime.min
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return datetime.min


def _started_at(record: dict[str, Any]) -> datetime:
    return parse_started_at((record.get("autoevaluacion") or {}).get("fecha_inicio"))


def _record_id(record: Any) -> Any:
    if isinstance(record, dict):
        return (record.get("autoevaluacion") or {}).get("id_autoevaluacion")
    return None


class LocalHistory:
    """
    Completed results kept on the client side.

    Saving a record whose assessment id is already present replaces it in
    place; new ids go to the front. Reads come back newest ``fecha_inicio``
    first.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _raw(self) -> list[dict[str, Any]]:
        data = self.store.load(HISTORY_KEY, [])
        if not isinstance(data, list):
            logger.warning(f"Ignoring local history of type {type(data).__name__}")
            return []
        return [item for item in data if isinstance(item, dict)]

    def save_result(self, record: dict[str, Any]) -> None:
        history = self._raw()
        record_id = _record_id(record)
        for i, existing in enumerate(history):
            if _record_id(existing) == record_id:
                history[i] = record
                break
        else:
            history.insert(0, record)
        self.store.save(HISTORY_KEY, history)

    def all(self) -> list[ResultRecord]:
        records: list[ResultRecord] = []
        for item in sorted(self._raw(), key=_started_at, reverse=True):
            try:
                records.append(ResultRecord.model_validate(item))
            except PydanticValidationError:
                logger.warning(f"Skipping malformed history entry {_record_id(item)!r}")
        return records

    def latest(self) -> ResultRecord | None:
        records = self.all()
        return records[0] if records else None

    def last_result(self) -> ResultRecord | None:
        data = self.store.load(LAST_RESULT_KEY)
        if data is None:
            return None
        try:
            return ResultRecord.model_validate(data)
        except PydanticValidationError:
            logger.warning("Stored last result is malformed; ignoring it")
            return None

    def clear(self) -> None:
        self.store.remove(HISTORY_KEY, LAST_RESULT_KEY)


class SessionStore:
    """The logged-in user and token as persisted locally."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @property
    def user(self) -> dict[str, Any] | None:
        user = self.store.load(USER_KEY)
        return user if isinstance(user, dict) else None

    @property
    def token(self) -> str | None:
        token = self.store.load(TOKEN_KEY)
        return token if isinstance(token, str) else None

    @property
    def business_id(self) -> int | None:
        """``usuario.bodega.id`` or, failing that, ``usuario.id_bodega``."""
        user = self.user or {}
        bodega = user.get("bodega")
        candidate = bodega.get("id") if isinstance(bodega, dict) else None
        if candidate is None:
            candidate = user.get("id_bodega")
        try:
            return int(candidate) if candidate is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def active_assessment_id(self) -> int | None:
        value = self.store.load(ASSESSMENT_ID_KEY)
        return value if isinstance(value, int) else None

    def save_auth(self, auth: AuthPayload) -> None:
        self.store.save(USER_KEY, auth.usuario)
        if auth.token:
            self.store.save(TOKEN_KEY, auth.token)
        if auth.refresh_token:
            self.store.save(REFRESH_TOKEN_KEY, auth.refresh_token)
        logger.info("Stored authenticated user")

    def logout(self) -> None:
        self.store.remove(USER_KEY, TOKEN_KEY, REFRESH_TOKEN_KEY)
        logger.info("Cleared stored session")
