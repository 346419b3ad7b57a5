"""Draft store tests — database, Redis and in-memory backends."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from freshintake.middleware.exceptions import DraftCorruptedError
from freshintake.models.receiving_draft import ReceivingDraft
from freshintake.schemas.receiving import Draft
from freshintake.services.draft_store import (
    DbDraftStore,
    InMemoryDraftStore,
    RedisDraftStore,
    purge_stale_drafts,
)


@pytest.mark.unit
@pytest.mark.asyncio
class TestInMemoryDraftStore:

    async def test_load_missing_returns_empty_draft(self):
        store = InMemoryDraftStore("d-1")
        draft = await store.load()
        assert draft.is_empty
        assert draft.draft_id == "d-1"
        assert not await store.exists()

    async def test_save_replaces_wholesale(self, finalized_draft):
        store = InMemoryDraftStore(finalized_draft.draft_id)
        await store.save(finalized_draft)
        await store.save(finalized_draft.model_copy(update={"items": [], "current_step": 2}))
        loaded = await store.load()
        assert loaded.items == []
        assert loaded.current_step == 2

    async def test_round_trip_preserves_stages_and_decimals(self, two_item_draft):
        store = InMemoryDraftStore(two_item_draft.draft_id)
        await store.save(two_item_draft)
        assert await store.load() == two_item_draft

    async def test_clear(self, finalized_draft):
        store = InMemoryDraftStore(finalized_draft.draft_id)
        await store.save(finalized_draft)
        await store.clear()
        assert not await store.exists()

    async def test_rejects_other_drafts(self, finalized_draft):
        store = InMemoryDraftStore("someone-else")
        with pytest.raises(ValueError):
            await store.save(finalized_draft)

    async def test_corrupted_payload(self):
        store = InMemoryDraftStore("d-1", {"d-1": '{"draft_id": "d-1", "current_step": 9}'})
        with pytest.raises(DraftCorruptedError):
            await store.load()


@pytest.mark.unit
@pytest.mark.asyncio
class TestDbDraftStore:

    async def test_save_and_load(self, db_session, finalized_draft):
        store = DbDraftStore(db_session, finalized_draft.draft_id)
        await store.save(finalized_draft)
        await db_session.commit()

        row = await db_session.get(ReceivingDraft, finalized_draft.draft_id)
        assert row.current_step == 6
        assert await store.load() == finalized_draft

    async def test_update_existing_row(self, db_session, finalized_draft):
        store = DbDraftStore(db_session, finalized_draft.draft_id)
        await store.save(finalized_draft)
        await store.save(finalized_draft.model_copy(update={"current_step": 5}))
        assert (await store.load()).current_step == 5

    async def test_clear(self, db_session, finalized_draft):
        store = DbDraftStore(db_session, finalized_draft.draft_id)
        await store.save(finalized_draft)
        await store.clear()
        assert not await store.exists()
        assert (await store.load()).is_empty

    async def test_purge_stale_drafts(self, db_session, finalized_draft):
        fresh = Draft.empty("fresh")
        await DbDraftStore(db_session, "fresh").save(fresh)
        await DbDraftStore(db_session, finalized_draft.draft_id).save(finalized_draft)
        await db_session.execute(
            update(ReceivingDraft)
            .where(ReceivingDraft.draft_id == finalized_draft.draft_id)
            .values(updated_at=datetime.utcnow() - timedelta(days=30))
        )

        purged = await purge_stale_drafts(db_session, timedelta(days=7))

        assert purged == 1
        assert await DbDraftStore(db_session, "fresh").exists()
        assert not await DbDraftStore(db_session, finalized_draft.draft_id).exists()


@pytest.mark.cache
@pytest.mark.asyncio
class TestRedisDraftStore:

    async def test_save_sets_ttl(self, redis_client, finalized_draft):
        store = RedisDraftStore(redis_client, finalized_draft.draft_id, ttl_seconds=60)
        await store.save(finalized_draft)

        assert await store.load() == finalized_draft
        ttl = await redis_client.ttl(store.key)
        assert 0 < ttl <= 60

    async def test_clear(self, redis_client, finalized_draft):
        store = RedisDraftStore(redis_client, finalized_draft.draft_id, ttl_seconds=60)
        await store.save(finalized_draft)
        await store.clear()
        assert not await store.exists()
