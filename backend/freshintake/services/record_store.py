"""Record store — generic collection-level access to the database.

The receiving workflow only needs a handful of operations against four
collections, so it talks to this small interface instead of the ORM:

    insert(collection, record)        → stored record (with generated id)
    insert_many(collection, records)  → stored records
    select(collection, where, contains, order_by, limit) → records
    delete(collection, where)         → number of rows removed
    transaction()                     → store bound to one DB transaction

``where`` values are compared for equality; a list/tuple/set value means
"one of".  ``contains`` does a substring match.

SqlRecordStore opens a short-lived session per call (committed on
success) unless it is bound to a transaction, in which case the owner of
the transaction commits or rolls back.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol

from sqlalchemy import delete, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from freshintake.models.client import Client
from freshintake.models.produce import Produce
from freshintake.models.receiving import ReceivingItem, ReceivingRecord

COLLECTIONS = {
    "clients": Client,
    "produce": Produce,
    "receiving_records": ReceivingRecord,
    "receiving_items": ReceivingItem,
}


class RecordStore(Protocol):
    supports_transactions: bool

    async def insert(self, collection: str, record: dict) -> dict: ...

    async def insert_many(self, collection: str, records: list[dict]) -> list[dict]: ...

    async def select(
        self,
        collection: str,
        where: dict | None = None,
        contains: dict | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]: ...

    async def delete(self, collection: str, where: dict) -> int: ...

    def transaction(self): ...


def _model(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


def _as_dict(obj) -> dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


def _conditions(model, where: dict | None, contains: dict | None) -> list:
    conditions = []
    for key, value in (where or {}).items():
        column = getattr(model, key)
        if isinstance(value, (list, tuple, set)):
            conditions.append(column.in_(list(value)))
        else:
            conditions.append(column == value)
    for key, value in (contains or {}).items():
        conditions.append(getattr(model, key).contains(value))
    return conditions


class SqlRecordStore:
    supports_transactions = True

    def __init__(
        self,
        session_factory: async_sessionmaker,
        bound: AsyncSession | None = None,
    ):
        self.session_factory = session_factory
        self.bound = bound

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self.bound is not None:
            yield self.bound
            return
        async with self.session_factory() as db:
            try:
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SqlRecordStore"]:
        """All writes made through the yielded store commit or roll back together."""
        if self.bound is not None:
            yield self
            return
        async with self.session_factory() as db:
            try:
                yield type(self)(self.session_factory, bound=db)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def insert(self, collection: str, record: dict) -> dict:
        model = _model(collection)
        async with self._session() as db:
            obj = model(**record)
            db.add(obj)
            await db.flush()
            return _as_dict(obj)

    async def insert_many(self, collection: str, records: list[dict]) -> list[dict]:
        model = _model(collection)
        async with self._session() as db:
            objs = [model(**record) for record in records]
            db.add_all(objs)
            await db.flush()
            return [_as_dict(obj) for obj in objs]

    async def select(
        self,
        collection: str,
        where: dict | None = None,
        contains: dict | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        model = _model(collection)
        stmt = select(model).where(*_conditions(model, where, contains))
        if order_by:
            column = getattr(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column)
        if limit:
            stmt = stmt.limit(limit)
        async with self._session() as db:
            result = await db.execute(stmt)
            return [_as_dict(obj) for obj in result.scalars().all()]

    async def delete(self, collection: str, where: dict) -> int:
        if not where:
            raise ValueError("Refusing to delete without a filter")
        model = _model(collection)
        async with self._session() as db:
            result = await db.execute(
                delete(model).where(*_conditions(model, where, None))
            )
            await db.flush()
            return result.rowcount or 0
