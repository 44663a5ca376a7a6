from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import KeyValueORM


T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Small generic repository over one ORM class."""

    model: type[T]  # must be set by subclasses

    def __init__(self, session: Session):
        if not hasattr(self, "model") or self.model is None:
            raise ValueError(f"{self.__class__.__name__}.model must be set to an ORM class.")
        self.s = session

    def get(self, id_: Any) -> T | None:
        return self.s.get(self.model, id_)

    def create(self, **fields: Any) -> T:
        obj = self.model(**fields)
        self.s.add(obj)
        self.s.flush()
        return obj

    def update(self, obj: T, **fields: Any) -> T:
        for k, v in fields.items():
            setattr(obj, k, v)
        self.s.flush()
        return obj

    def delete(self, obj: T) -> None:
        self.s.delete(obj)
        self.s.flush()


class KeyValueRepo(BaseRepository[KeyValueORM]):
    model = KeyValueORM

    def read(self, key: str) -> str | None:
        row = self.get(key)
        return row.value if row is not None else None

    def upsert(self, key: str, value: str) -> KeyValueORM:
        row = self.get(key)
        if row is None:
            return self.create(key=key, value=value)
        return self.update(row, value=value, updated_at=datetime.now())

    def remove(self, key: str) -> bool:
        row = self.get(key)
        if row is None:
            return False
        self.delete(row)
        return True

    def keys(self) -> list[str]:
        return list(self.s.scalars(select(KeyValueORM.key).order_by(KeyValueORM.key)))
