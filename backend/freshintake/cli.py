"""Management CLI.

Usage:
    python -m freshintake.cli init-db              # Create all tables (dev / demo)
    python -m freshintake.cli seed-reference FILE  # Load clients + produce from JSON
    python -m freshintake.cli purge-drafts [DAYS]  # Delete drafts idle for DAYS (default 7)

The seed file looks like:
    {"clients": [{"name": "Green Grocer"}],
     "produce": [{"name": "Tomato", "unit": "kg", "category": "Vegetables"}]}
"""

import asyncio
import json
import sys
from datetime import timedelta

from freshintake.database import Base, async_session, engine, get_session_factory
from freshintake.models import *  # noqa: F401,F403 - register all tables
from freshintake.services.draft_store import purge_stale_drafts
from freshintake.services.record_store import SqlRecordStore
from freshintake.utils.cache import close_redis, invalidate_cache


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created.")


async def seed_reference(path: str):
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)

    store = SqlRecordStore(get_session_factory())
    async with store.transaction() as tx:
        clients = await tx.insert_many("clients", data.get("clients", []))
        produce = await tx.insert_many("produce", data.get("produce", []))
    await invalidate_cache("reference:*")
    await close_redis()
    print(f"Loaded {len(clients)} client(s) and {len(produce)} produce item(s).")


async def purge_drafts(days: int):
    async with async_session() as db:
        purged = await purge_stale_drafts(db, timedelta(days=days))
        await db.commit()
    print(f"Purged {purged} draft(s) idle for more than {days} day(s).")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "init-db":
        asyncio.run(init_db())
    elif cmd == "seed-reference" and len(sys.argv) > 2:
        asyncio.run(seed_reference(sys.argv[2]))
    elif cmd == "purge-drafts":
        asyncio.run(purge_drafts(int(sys.argv[2]) if len(sys.argv) > 2 else 7))
    else:
        print("Usage: python -m freshintake.cli [init-db|seed-reference FILE|purge-drafts [DAYS]]")
