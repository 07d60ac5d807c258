"""In-memory document store for development and testing."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from . import models
from .store import Repository, Store, parse_sort

T = TypeVar("T")


class InMemoryRepository(Repository[T]):
    """In-memory implementation of the repository contract.

    Stores transient ORM instances so callers see the same attribute API as
    with the SQL store. Column defaults are applied on create the way the
    database would apply them on insert.
    """

    def __init__(self, model: Type[T]) -> None:
        self.model = model
        self.entity = model.__name__
        self._docs: Dict[str, T] = {}
        self.fail_on: Dict[str, Exception] = {}

    def _check_failure(self, op: str) -> None:
        # Lets tests simulate a store outage for one operation type
        exc = self.fail_on.get(op)
        if exc is not None:
            raise exc

    def _apply_defaults(self, obj: T) -> None:
        for column in self.model.__table__.columns:
            if getattr(obj, column.key, None) is not None:
                continue
            if column.default is not None:
                arg = column.default.arg
                value = arg(None) if callable(arg) else arg
                setattr(obj, column.key, value)
            elif column.server_default is not None:
                setattr(obj, column.key, datetime.now(timezone.utc))

    def filter(self, criteria: Dict[str, Any], sort: Optional[str] = None, limit: Optional[int] = None) -> List[T]:
        items = [
            doc for doc in self._docs.values()
            if all(getattr(doc, key) == value for key, value in criteria.items())
        ]
        order = parse_sort(sort)
        if order:
            items.sort(key=lambda doc: getattr(doc, order[0]), reverse=order[1])
        if limit is not None:
            items = items[:limit]
        return items

    def get(self, doc_id: str) -> Optional[T]:
        return self._docs.get(doc_id)

    def create(self, **fields: Any) -> T:
        self._check_failure("create")
        fields.setdefault("id", models.new_id())
        obj = self.model(**fields)
        self._apply_defaults(obj)
        self._docs[obj.id] = obj
        return obj

    def update(self, doc_id: str, **fields: Any) -> T:
        self._check_failure("update")
        obj = self.require(doc_id)
        for key, value in fields.items():
            setattr(obj, key, value)
        obj.updated_at = datetime.now(timezone.utc)
        return obj

    def delete(self, doc_id: str) -> None:
        self._check_failure("delete")
        self.require(doc_id)
        del self._docs[doc_id]

    def clear(self) -> None:
        """Clear all data (for testing)."""
        self._docs.clear()


def memory_store() -> Store:
    return Store(InMemoryRepository)
