from __future__ import annotations

import logging
from functools import partial
from typing import Any, Callable, List, Optional

import anyio
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import StoreError
from ..models import TABLES
from .base import Filters, Row

logger = logging.getLogger(__name__)


class SqlStore:
    """Table store over the local SQLAlchemy database (development and tests).

    Session work is blocking, so each call runs on a worker thread. A caller
    that gives up (a timeout) is released at once; the thread finishes on its own.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        if session_factory is None:
            from ..db import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    async def select(
        self,
        table: str,
        *,
        match: Filters = None,
        any_of: Filters = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        return await self._run(partial(self._select, table, match=match, any_of=any_of, order_by=order_by))

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        return await self._run(partial(self._insert, table, rows))

    async def update(self, table: str, values: Row, *, match: Filters = None, any_of: Filters = None) -> List[Row]:
        return await self._run(partial(self._update, table, values, match=match, any_of=any_of))

    async def delete(self, table: str, *, match: Filters = None, any_of: Filters = None) -> int:
        return await self._run(partial(self._delete, table, match=match, any_of=any_of))

    async def aclose(self) -> None:
        return None

    @staticmethod
    async def _run(work: Callable[[], Any]) -> Any:
        return await anyio.to_thread.run_sync(work, abandon_on_cancel=True)

    def _select(self, table: str, *, match: Filters, any_of: Filters, order_by: Optional[str]) -> List[Row]:
        model = self._model(table)
        with self._session() as db:
            query = self._filtered(db, model, match, any_of)
            if order_by:
                query = query.order_by(getattr(model, order_by).asc())
            return [self._to_row(model, obj) for obj in query.all()]

    def _insert(self, table: str, rows: List[Row]) -> List[Row]:
        model = self._model(table)
        with self._session() as db:
            objs = [model(**row) for row in rows]
            db.add_all(objs)
            db.commit()
            return [self._to_row(model, obj) for obj in objs]

    def _update(self, table: str, values: Row, *, match: Filters, any_of: Filters) -> List[Row]:
        model = self._model(table)
        with self._session() as db:
            objs = self._filtered(db, model, match, any_of).all()
            for obj in objs:
                for key, value in values.items():
                    setattr(obj, key, value)
            db.commit()
            return [self._to_row(model, obj) for obj in objs]

    def _delete(self, table: str, *, match: Filters, any_of: Filters) -> int:
        model = self._model(table)
        with self._session() as db:
            objs = self._filtered(db, model, match, any_of).all()
            for obj in objs:
                db.delete(obj)
            db.commit()
            return len(objs)

    def _session(self) -> "_GuardedSession":
        return _GuardedSession(self._session_factory)

    @staticmethod
    def _model(table: str) -> Any:
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f"unknown table {table!r}") from None

    @staticmethod
    def _filtered(db: Session, model: Any, match: Filters, any_of: Filters):
        query = db.query(model)
        if match:
            query = query.filter_by(**dict(match))
        if any_of:
            query = query.filter(or_(*[getattr(model, key) == value for key, value in any_of.items()]))
        return query

    @staticmethod
    def _to_row(model: Any, obj: Any) -> Row:
        return {column.name: getattr(obj, column.name) for column in model.__table__.columns}


class _GuardedSession:
    """Session context that rolls back and reports database failures as StoreError."""

    def __init__(self, factory: sessionmaker) -> None:
        self._factory = factory
        self._db: Optional[Session] = None

    def __enter__(self) -> Session:
        self._db = self._factory()
        return self._db

    def __exit__(self, exc_type, exc, tb) -> bool:
        assert self._db is not None
        try:
            if exc is not None:
                self._db.rollback()
        finally:
            self._db.close()
        if isinstance(exc, SQLAlchemyError):
            logger.error("Database call failed: %s", exc)
            raise StoreError(f"database error: {exc}") from exc
        return False
