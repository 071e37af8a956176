"""
backend/kupon/services/coupon_service.py

Purpose:
    Result aggregator: derives a coupon's tri-state result from its legs and
    persists it once it becomes terminal.

Dependencies:
    - kupon.database
    - bson
"""

import logging
from typing import Iterable, Optional

from bson import ObjectId

import kupon.database as _db
from kupon.models.bet import BetResult
from kupon.utils import utcnow

logger = logging.getLogger("kupon.coupon_service")

_COUPON_BATCH_LIMIT = 5000


def aggregate_leg_results(results: Iterable[str]) -> BetResult:
    """Join leg results into a coupon result.

    lost if any leg lost, won if there is at least one leg and all legs won,
    pending otherwise (including the empty coupon).
    """
    statuses = [BetResult(r) if r else BetResult.pending for r in results]
    if any(s == BetResult.lost for s in statuses):
        return BetResult.lost
    if statuses and all(s == BetResult.won for s in statuses):
        return BetResult.won
    return BetResult.pending


async def _fetch_leg_results(coupon: dict) -> list[str]:
    """Results of the coupon's legs in leg order. Missing legs count as pending."""
    leg_ids = [str(leg_id) for leg_id in coupon.get("leg_ids", [])]
    object_ids = [ObjectId(leg_id) for leg_id in leg_ids if ObjectId.is_valid(leg_id)]
    if not object_ids:
        return [BetResult.pending.value for _ in leg_ids]

    docs = await _db.db.bets.find(
        {"_id": {"$in": object_ids}}, {"result": 1},
    ).to_list(length=len(object_ids))
    by_id = {str(doc["_id"]): doc.get("result") for doc in docs}

    missing = [leg_id for leg_id in leg_ids if leg_id not in by_id]
    if missing:
        logger.warning(
            "Coupon %s references %d unknown bet(s): %s",
            str(coupon["_id"]), len(missing), ", ".join(missing),
        )
    return [by_id.get(leg_id) or BetResult.pending.value for leg_id in leg_ids]


async def update_coupon_results(bet_ids: Optional[Iterable[str]] = None) -> int:
    """Recompute pending coupons and persist the ones that became won/lost.

    With `bet_ids`, only coupons referencing one of those bets are considered.
    Coupons already won/lost are never selected, and the write is conditional
    on the coupon still being pending. Returns the number of coupons resolved.
    """
    query: dict = {"result": BetResult.pending.value}
    if bet_ids is not None:
        ids = [str(bet_id) for bet_id in bet_ids]
        if not ids:
            return 0
        query["leg_ids"] = {"$in": ids}

    coupons = await _db.db.coupons.find(query, {"leg_ids": 1, "name": 1}).to_list(length=_COUPON_BATCH_LIMIT)
    if len(coupons) >= _COUPON_BATCH_LIMIT:
        logger.warning(
            "Batch cap reached: %d pending coupons loaded, the rest waits for the next run",
            _COUPON_BATCH_LIMIT,
        )

    resolved = 0
    for coupon in coupons:
        coupon_id = str(coupon["_id"])
        try:
            result = aggregate_leg_results(await _fetch_leg_results(coupon))
            if result == BetResult.pending:
                continue

            update = await _db.db.coupons.update_one(
                {"_id": coupon["_id"], "result": BetResult.pending.value},
                {"$set": {"result": result.value, "resolved_at": utcnow()}},
            )
        except Exception:
            logger.exception("Coupon aggregation failed for %s", coupon_id)
            continue

        if update.modified_count:
            resolved += 1
            logger.info(
                "Coupon %s (%s) resolved: %s",
                coupon_id, coupon.get("name") or "-", result.value,
            )

    if resolved:
        logger.info("Resolved %d coupons", resolved)
    return resolved
