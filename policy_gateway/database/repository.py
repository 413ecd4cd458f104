"""
Generic repository over any declarative model.

One class serves every table; it works inside a caller-supplied session so
several repository calls can share one transaction.
"""

from __future__ import annotations

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from policy_gateway.database.models import Base

ModelT = TypeVar("ModelT", bound=Base)


class Repository(Generic[ModelT]):
    def __init__(self, session: Session, model: Type[ModelT]) -> None:
        self.session = session
        self.model = model

    def _column(self, name: str):
        column = getattr(self.model, name, None)
        if column is None:
            raise AttributeError(f"{self.model.__name__} has no column '{name}'")
        return column

    def _where(self, stmt, criteria: Dict[str, Any]):
        for name, value in criteria.items():
            stmt = stmt.where(self._column(name) == value)
        return stmt

    def find(self, pk: Any) -> Optional[ModelT]:
        return self.session.get(self.model, pk)

    def find_by(self, **criteria: Any) -> Optional[ModelT]:
        stmt = self._where(select(self.model), criteria).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def list(
        self,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        **criteria: Any,
    ) -> List[ModelT]:
        stmt = self._where(select(self.model), criteria)
        if order_by:
            col = self._column(order_by)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def count(self, **criteria: Any) -> int:
        stmt = self._where(select(func.count()).select_from(self.model), criteria)
        return int(self.session.execute(stmt).scalar_one())

    def create(self, **values: Any) -> ModelT:
        obj = self.model(**values)
        self.session.add(obj)
        self.session.flush()
        return obj

    def update(self, pk: Any, values: Dict[str, Any]) -> Optional[ModelT]:
        obj = self.find(pk)
        if obj is None:
            return None
        for k, v in values.items():
            if hasattr(obj, k):
                setattr(obj, k, v)
        self.session.flush()
        return obj

    def update_where(self, criteria: Dict[str, Any], values: Dict[str, Any]) -> int:
        """Bulk UPDATE guarded by ``criteria``; returns the affected row count."""
        stmt = self._where(update(self.model), criteria).values(**values)
        return self.session.execute(stmt).rowcount

    def delete(self, pk: Any) -> bool:
        obj = self.find(pk)
        if obj is None:
            return False
        self.session.delete(obj)
        self.session.flush()
        return True
