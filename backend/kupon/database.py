"""
backend/kupon/database.py

Purpose:
    MongoDB connection bootstrap and index management for the matches, bets
    and coupons collections.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - kupon.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, OperationFailure

from kupon.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("kupon.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=10,
        minPoolSize=1,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Matches ----
    try:
        await db.matches.create_index("external_id", unique=True)
    except (DuplicateKeyError, OperationFailure) as exc:
        logger.warning(
            "Skipped unique external_id index due to duplicate data: %s", exc,
        )
        await db.matches.create_index("external_id", name="external_id_lookup")
    # Poller scan: non-terminal matches ordered by kickoff
    await db.matches.create_index([("status", 1), ("kickoff_at", 1)])

    # ---- Bets (best bets + coupon legs) ----
    await db.bets.create_index([("match_id", 1), ("result", 1)])

    # ---- Coupons ----
    await db.coupons.create_index("result")
    await db.coupons.create_index("leg_ids")

    logger.info("Database indexes ensured")
