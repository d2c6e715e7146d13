"""
backend/betsim/services/odds_cache_repository.py

Purpose:
    Persistence for cached odds snapshots (one document per event id) and
    per-sport fetch metadata. A refresh replaces a sport's events wholesale
    inside one MongoDB transaction.

Dependencies:
    - betsim.database
    - betsim.models.odds
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import betsim.database as _db
from betsim.models.odds import OddsSnapshot, SportCacheMetadata
from betsim.utils import ensure_utc


def _to_snapshot(doc: dict[str, Any]) -> OddsSnapshot:
    payload = {k: v for k, v in doc.items() if k != "_id"}
    payload["event_id"] = doc["_id"]
    payload["cached_at"] = ensure_utc(doc["cached_at"])
    payload["commence_time"] = ensure_utc(doc["commence_time"])
    return OddsSnapshot(**payload)


def _to_document(snapshot: OddsSnapshot) -> dict[str, Any]:
    doc = snapshot.model_dump()
    doc["_id"] = doc.pop("event_id")
    return doc


class OddsCacheRepository:
    async def get_metadata(self, sport_key: str) -> Optional[SportCacheMetadata]:
        doc = await _db.db.odds_cache_meta.find_one({"_id": sport_key})
        if not doc:
            return None
        return SportCacheMetadata(
            sport_key=sport_key,
            last_fetch_at=ensure_utc(doc["last_fetch_at"]),
            event_count=int(doc.get("event_count", 0)),
        )

    async def get_events(self, sport_key: str) -> list[OddsSnapshot]:
        docs = await _db.db.odds_cache.find(
            {"sport_key": sport_key},
        ).sort("commence_time", 1).to_list(length=1000)
        return [_to_snapshot(d) for d in docs]

    async def get_event(self, event_id: str) -> Optional[OddsSnapshot]:
        doc = await _db.db.odds_cache.find_one({"_id": event_id})
        return _to_snapshot(doc) if doc else None

    async def replace_sport(
        self, sport_key: str, snapshots: list[OddsSnapshot], fetched_at: datetime,
    ) -> None:
        """Delete the sport's events, insert the new batch and stamp metadata, atomically."""
        docs = [_to_document(s) for s in snapshots]
        async with await _db.client.start_session() as session:
            async with session.start_transaction():
                await _db.db.odds_cache.delete_many({"sport_key": sport_key}, session=session)
                if docs:
                    await _db.db.odds_cache.insert_many(docs, session=session)
                await _db.db.odds_cache_meta.update_one(
                    {"_id": sport_key},
                    {"$set": {"last_fetch_at": fetched_at, "event_count": len(docs)}},
                    upsert=True,
                    session=session,
                )

    async def purge_older_than(self, cutoff: datetime) -> int:
        result = await _db.db.odds_cache.delete_many({"cached_at": {"$lt": cutoff}})
        return result.deleted_count
