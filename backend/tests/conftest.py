"""Pytest configuration and fixtures for FreshIntake tests.

Provides reusable fixtures for the database, the HTTP client, reference
data, ready-made drafts and Redis.

A throwaway SQLite file (aiosqlite) stands in for Postgres; each test gets
a fresh database.
"""

import os

os.environ.setdefault("DEBUG", "false")

from datetime import date, datetime
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from freshintake.config import settings
from freshintake.database import Base, get_db
from freshintake.main import app
from freshintake.models.client import Client
from freshintake.models.produce import Produce
from freshintake.routers.receiving import get_record_store
from freshintake.schemas.receiving import (
    DropConfirmation,
    Draft,
    FinalizedItem,
    ProduceRef,
    ReturnReason,
)
from freshintake.services.record_store import SqlRecordStore
from freshintake.utils.cache import close_redis, invalidate_cache

CLIENT_ID = "C1"


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a fresh SQLite database with all tables."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'freshintake.db'}", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def record_store(session_factory) -> SqlRecordStore:
    return SqlRecordStore(session_factory)


@pytest_asyncio.fixture
async def client(session_factory, reference_data) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database dependencies pointed at the test DB."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_record_store] = lambda: SqlRecordStore(session_factory)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def tomato() -> ProduceRef:
    return ProduceRef(id="p-tomato", name="Tomato", unit="kg")


@pytest.fixture
def onion() -> ProduceRef:
    return ProduceRef(id="p-onion", name="Onion", unit="kg")


@pytest.fixture
def catalog(tomato, onion) -> dict[str, ProduceRef]:
    return {tomato.id: tomato, onion.id: onion}


@pytest_asyncio.fixture
async def reference_data(session_factory, tomato, onion) -> dict:
    """Client C1 plus the Tomato and Onion catalog entries."""
    async with session_factory() as session:
        session.add(Client(id=CLIENT_ID, name="Green Grocer"))
        session.add(Client(id="C2", name="Dormant Deli", is_active=False))
        for ref in (tomato, onion):
            session.add(Produce(id=ref.id, name=ref.name, unit=ref.unit, category="Vegetables"))
        await session.commit()
    return {"client_id": CLIENT_ID, "produce_ids": [tomato.id, onion.id]}


@pytest.fixture
def finalized_draft(tomato) -> Draft:
    """A draft that has passed steps 1-5 and sits on the review step."""
    item = FinalizedItem(
        item_id=1,
        produce_ref=tomato,
        ordered_quantity=Decimal("100"),
        received_quantity=Decimal("95"),
        grade_a=Decimal("60"),
        grade_b=Decimal("30"),
        grade_c=Decimal("5"),
        returned_quantity=Decimal("5"),
        return_reason=ReturnReason.DAMAGED,
    )
    return Draft(
        draft_id="draft-1",
        client_id=CLIENT_ID,
        order_date=date(2026, 10, 1),
        items=[item],
        drop_confirmation=DropConfirmation(is_dropped=True, drop_time=datetime(2026, 10, 1, 9, 30)),
        has_returns=True,
        current_step=6,
    )


@pytest.fixture
def two_item_draft(finalized_draft, onion) -> Draft:
    onions = FinalizedItem(
        item_id=2,
        produce_ref=onion,
        ordered_quantity=Decimal("40"),
        received_quantity=Decimal("40"),
        grade_a=Decimal("40"),
    )
    return finalized_draft.model_copy(update={"items": [*finalized_draft.items, onions]})


# ── Redis Fixtures ───────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def reset_cache():
    """Drop cached reference lists and the shared client around each test."""
    await invalidate_cache("reference:*")
    yield
    await close_redis()


@pytest_asyncio.fixture
async def redis_client():
    """Create Redis client for tests; skips when no server is reachable."""
    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except redis.RedisError:
        await client.aclose()
        pytest.skip("Redis not available")

    yield client

    # Cleanup: flush test database
    await client.flushdb()
    await client.aclose()
