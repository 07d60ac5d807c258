# Document-store access for the booking engine.
# Each entity family gets a repository exposing the same small contract
# (list/filter/get/create/update/delete, exact-match filters only); richer
# predicates such as date-range overlap are evaluated by the callers.
# Writes commit one document at a time: there is no multi-document transaction.
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from fastapi import Depends
from sqlalchemy.orm import Session

from . import models
from .db import get_db
from .errors import NotFound

logger = logging.getLogger("gorentals.store")

T = TypeVar("T")


def parse_sort(sort: Optional[str]) -> Optional[tuple]:
    """'-created_at' -> ('created_at', True); 'start_date' -> ('start_date', False)."""
    if not sort:
        return None
    if sort.startswith("-"):
        return sort[1:], True
    return sort, False


class Repository(Generic[T]):
    """Collaborator contract for one entity type."""

    entity: str = "Document"

    def list(self, sort: Optional[str] = None) -> List[T]:
        return self.filter({}, sort=sort)

    def filter(self, criteria: Dict[str, Any], sort: Optional[str] = None, limit: Optional[int] = None) -> List[T]:
        raise NotImplementedError

    def get(self, doc_id: str) -> Optional[T]:
        raise NotImplementedError

    def require(self, doc_id: str) -> T:
        obj = self.get(doc_id)
        if obj is None:
            raise NotFound(self.entity, doc_id)
        return obj

    def first(self, criteria: Dict[str, Any]) -> Optional[T]:
        items = self.filter(criteria, limit=1)
        return items[0] if items else None

    def create(self, **fields: Any) -> T:
        raise NotImplementedError

    def update(self, doc_id: str, **fields: Any) -> T:
        raise NotImplementedError

    def delete(self, doc_id: str) -> None:
        raise NotImplementedError


class SqlRepository(Repository[T]):
    """Repository over one ORM model; each write is committed immediately."""

    def __init__(self, db: Session, model: Type[T]) -> None:
        self.db = db
        self.model = model
        self.entity = model.__name__

    def filter(self, criteria: Dict[str, Any], sort: Optional[str] = None, limit: Optional[int] = None) -> List[T]:
        q = self.db.query(self.model).filter_by(**criteria)
        order = parse_sort(sort)
        if order:
            column = getattr(self.model, order[0])
            q = q.order_by(column.desc() if order[1] else column.asc())
        if limit is not None:
            q = q.limit(limit)
        return q.all()

    def get(self, doc_id: str) -> Optional[T]:
        return self.db.get(self.model, doc_id)

    def create(self, **fields: Any) -> T:
        fields.setdefault("id", models.new_id())
        obj = self.model(**fields)
        self.db.add(obj)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(obj)
        return obj

    def update(self, doc_id: str, **fields: Any) -> T:
        obj = self.require(doc_id)
        for key, value in fields.items():
            setattr(obj, key, value)
        self.db.add(obj)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(obj)
        return obj

    def delete(self, doc_id: str) -> None:
        obj = self.require(doc_id)
        self.db.delete(obj)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


class Store:
    """Capability-scoped bundle of repositories handed to services and handlers."""

    def __init__(self, factory: Callable[[type], Repository]) -> None:
        self.users: Repository[models.User] = factory(models.User)
        self.vehicles: Repository[models.Vehicle] = factory(models.Vehicle)
        self.bookings: Repository[models.Booking] = factory(models.Booking)
        self.transactions: Repository[models.Transaction] = factory(models.Transaction)
        self.notifications: Repository[models.Notification] = factory(models.Notification)
        self.coupons: Repository[models.Coupon] = factory(models.Coupon)
        self.coupon_usages: Repository[models.CouponUsage] = factory(models.CouponUsage)
        self.reviews: Repository[models.Review] = factory(models.Review)


def sql_store(db: Session) -> Store:
    return Store(lambda model: SqlRepository(db, model))


def get_store(db: Session = Depends(get_db)) -> Store:
    """FastAPI dependency: a Store bound to the request's database session."""
    return sql_store(db)
