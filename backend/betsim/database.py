"""
backend/betsim/database.py

Purpose:
    MongoDB connection bootstrap and index management for the odds cache,
    the AI analysis cache and the wallet/bet ledger.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - betsim.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import OperationFailure

from betsim.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("betsim.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=2,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_indexes() -> None:
    # Odds cache: one document per event id (_id), scanned per sport.
    await db.odds_cache.create_index("sport_key")
    await db.odds_cache.create_index("cached_at")

    # AI analysis cache keyed by event id (_id).
    await db.analysis_cache.create_index("cached_at")

    # Ledger. The wallet singleton is pinned by its fixed _id.
    await db.bets.create_index([("status", 1), ("placed_at", -1)])
    await db.bets.create_index("event_id")
    await db.wallet_transactions.create_index([("created_at", -1)])
    await db.wallet_transactions.create_index("bet_id", sparse=True)

    try:
        # Transactions are required by the ledger and cache writers.
        hello = await db.command("hello")
        if not hello.get("setName"):
            logger.warning(
                "MongoDB is not running as a replica set; ledger transactions will fail"
            )
    except OperationFailure:
        logger.debug("hello command unavailable", exc_info=True)

    logger.info("MongoDB indexes ensured")
