"""Draft store — persistence for in-progress receiving drafts.

A store instance is bound to one draft id and exposes three operations:

    load()   → the stored Draft, or Draft.empty(draft_id) if none exists
    save()   → replace the stored draft wholesale (no merging)
    clear()  → delete it (after a successful commit or abandonment)

Callers always read-modify-write the whole draft.  There is no locking:
if two tabs or processes edit the same draft, the last save wins.

Backends:
  - DbDraftStore      receiving_drafts table (default)
  - RedisDraftStore   one key per draft with a TTL (DRAFT_BACKEND=redis)
  - InMemoryDraftStore process-local dict, for the CLI and tests
"""

import logging
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as redis
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from freshintake.middleware.exceptions import DraftCorruptedError
from freshintake.models.receiving_draft import ReceivingDraft
from freshintake.schemas.receiving import Draft

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "receiving:draft"


class DraftStore(Protocol):
    draft_id: str

    async def exists(self) -> bool: ...

    async def load(self) -> Draft: ...

    async def save(self, draft: Draft) -> None: ...

    async def clear(self) -> None: ...


def _parse(draft_id: str, raw) -> Draft:
    try:
        if isinstance(raw, (str, bytes)):
            return Draft.model_validate_json(raw)
        return Draft.model_validate(raw)
    except ValidationError as exc:
        logger.warning(
            f"Stored draft {draft_id} failed validation",
            extra={"draft_id": draft_id, "errors": exc.error_count()},
        )
        raise DraftCorruptedError(draft_id, str(exc)) from exc


def _check_owner(store_draft_id: str, draft: Draft) -> None:
    if draft.draft_id != store_draft_id:
        raise ValueError(
            f"Draft {draft.draft_id} cannot be saved in the store for {store_draft_id}"
        )


# ── Database ─────────────────────────────────────────────────

class DbDraftStore:
    """Drafts as rows of receiving_drafts, in the caller's session."""

    def __init__(self, db: AsyncSession, draft_id: str):
        self.db = db
        self.draft_id = draft_id

    async def exists(self) -> bool:
        result = await self.db.execute(
            select(ReceivingDraft.draft_id).where(ReceivingDraft.draft_id == self.draft_id)
        )
        return result.scalar_one_or_none() is not None

    async def load(self) -> Draft:
        row = await self.db.get(ReceivingDraft, self.draft_id)
        if row is None:
            return Draft.empty(self.draft_id)
        return _parse(self.draft_id, row.payload)

    async def save(self, draft: Draft) -> None:
        _check_owner(self.draft_id, draft)
        payload = draft.model_dump(mode="json")
        row = await self.db.get(ReceivingDraft, self.draft_id)
        if row:
            row.payload = payload
            row.current_step = draft.current_step
            row.updated_at = datetime.utcnow()
        else:
            self.db.add(ReceivingDraft(
                draft_id=self.draft_id,
                current_step=draft.current_step,
                payload=payload,
            ))
        await self.db.flush()

    async def clear(self) -> None:
        await self.db.execute(
            delete(ReceivingDraft).where(ReceivingDraft.draft_id == self.draft_id)
        )
        await self.db.flush()


async def purge_stale_drafts(db: AsyncSession, older_than: timedelta) -> int:
    """Delete drafts nobody has touched for ``older_than``. Returns count."""
    cutoff = datetime.utcnow() - older_than
    result = await db.execute(
        delete(ReceivingDraft).where(ReceivingDraft.updated_at < cutoff)
    )
    await db.flush()
    purged = result.rowcount or 0
    if purged:
        logger.info(f"Purged {purged} stale receiving drafts older than {cutoff.isoformat()}")
    return purged


# ── Redis ────────────────────────────────────────────────────

class RedisDraftStore:
    """Drafts as JSON strings under receiving:draft:{id}, expiring after ttl."""

    def __init__(self, client: redis.Redis, draft_id: str, ttl_seconds: int):
        self.client = client
        self.draft_id = draft_id
        self.ttl_seconds = ttl_seconds

    @property
    def key(self) -> str:
        return f"{REDIS_KEY_PREFIX}:{self.draft_id}"

    async def exists(self) -> bool:
        return bool(await self.client.exists(self.key))

    async def load(self) -> Draft:
        raw = await self.client.get(self.key)
        if raw is None:
            return Draft.empty(self.draft_id)
        return _parse(self.draft_id, raw)

    async def save(self, draft: Draft) -> None:
        _check_owner(self.draft_id, draft)
        await self.client.set(self.key, draft.model_dump_json(), ex=self.ttl_seconds)

    async def clear(self) -> None:
        await self.client.delete(self.key)


# ── In-memory ────────────────────────────────────────────────

class InMemoryDraftStore:
    """Process-local store; drafts are kept serialized like the other backends."""

    def __init__(self, draft_id: str, backing: dict[str, str] | None = None):
        self.draft_id = draft_id
        self.backing = backing if backing is not None else {}

    async def exists(self) -> bool:
        return self.draft_id in self.backing

    async def load(self) -> Draft:
        raw = self.backing.get(self.draft_id)
        if raw is None:
            return Draft.empty(self.draft_id)
        return _parse(self.draft_id, raw)

    async def save(self, draft: Draft) -> None:
        _check_owner(self.draft_id, draft)
        self.backing[self.draft_id] = draft.model_dump_json()

    async def clear(self) -> None:
        self.backing.pop(self.draft_id, None)
