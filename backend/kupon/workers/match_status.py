"""Match status worker.

Polls the status source for every published match that is not terminal yet,
moves it through pending -> in_progress -> finished/cancelled, and grades the
match's pending bets as soon as a final score is known. Graded bets are then
folded into their coupons.

Every write is single-document and conditional on the old state, so a cycle
that dies halfway is finished by the next one: the re-evaluation pass picks up
finished matches that still have pending bets.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from bson import ObjectId

import kupon.database as _db
from kupon.config import settings
from kupon.models.bet import BetResult
from kupon.models.match import ACTIVE_MATCH_STATUSES, MatchStatus
from kupon.providers.base import StatusSource
from kupon.services.bet_grading import grade_bet
from kupon.services.coupon_service import update_coupon_results
from kupon.utils import utcnow
from kupon.workers._state import set_synced

logger = logging.getLogger("kupon.match_status")

WORKER_ID = "match_status"

# Per-query batch caps; anything beyond is picked up by the next cycle.
_MATCH_BATCH_LIMIT = 1000
_BET_BATCH_LIMIT = 1000
_SCORE_FETCH_LIMIT = 500

# API-Football short codes -> lifecycle status. Anything else (NS, TBD, SUSP,
# INT, ...) keeps the stored status.
PROVIDER_STATUS_MAP: dict[str, MatchStatus] = {
    **{code: MatchStatus.in_progress for code in ("1H", "2H", "HT", "ET", "P", "BT", "LIVE")},
    **{code: MatchStatus.finished for code in ("FT", "AET", "PEN")},
    **{code: MatchStatus.cancelled for code in ("PST", "CANC", "ABD", "AWD", "WO")},
}


def map_provider_status(status_code: Optional[str], current: MatchStatus) -> MatchStatus:
    """Translate a provider short code, falling back to the current status."""
    code = str(status_code or "").strip().upper()
    return PROVIDER_STATUS_MAP.get(code, current)


def _has_score(home_score: Optional[int], away_score: Optional[int]) -> bool:
    return home_score is not None and away_score is not None


def _warn_if_truncated(docs: list, limit: int, what: str) -> None:
    if len(docs) >= limit:
        logger.warning("Batch cap reached: %d %s loaded, the rest waits for the next cycle", limit, what)


# ---------- Grading ----------

async def grade_match_bets(match_id: str, home_score: int, away_score: int) -> int:
    """Grade every pending bet on a finished match, then update affected coupons.

    Bets that are already won/lost are never selected, and each write is
    conditional on the bet still being pending. Returns the number of bets graded.
    """
    bets = await _db.db.bets.find(
        {"match_id": match_id, "result": BetResult.pending.value},
        {"label": 1},
    ).to_list(length=_BET_BATCH_LIMIT)
    _warn_if_truncated(bets, _BET_BATCH_LIMIT, f"pending bets for match {match_id}")
    if not bets:
        return 0

    now = utcnow()
    graded_ids: list[str] = []
    for bet in bets:
        bet_id = str(bet["_id"])
        label = bet.get("label") or ""
        result = BetResult.won if grade_bet(label, home_score, away_score) else BetResult.lost
        try:
            update = await _db.db.bets.update_one(
                {"_id": bet["_id"], "result": BetResult.pending.value},
                {"$set": {"result": result.value, "graded_at": now}},
            )
        except Exception:
            logger.exception("Failed to store result for bet %s (%r)", bet_id, label)
            continue
        if update.modified_count:
            graded_ids.append(bet_id)
            logger.info("Bet %s %r: %s", bet_id, label, result.value.upper())

    if graded_ids:
        try:
            await update_coupon_results(graded_ids)
        except Exception:
            logger.exception("Coupon aggregation failed after grading match %s", match_id)
    return len(graded_ids)


# ---------- Poller ----------

async def _apply_safety_timeout(now: datetime) -> int:
    """Force-finish matches whose kickoff is older than the safety horizon.

    No score is known, so nothing is graded here; the re-evaluation pass may
    still fetch a score later.
    """
    cutoff = now - timedelta(hours=settings.MATCH_SAFETY_TIMEOUT_HOURS)
    stale = await _db.db.matches.find({
        "status": {"$in": ACTIVE_MATCH_STATUSES},
        "kickoff_at": {"$lte": cutoff},
    }).to_list(length=_MATCH_BATCH_LIMIT)
    _warn_if_truncated(stale, _MATCH_BATCH_LIMIT, "stale matches")

    closed = 0
    for match in stale:
        try:
            update = await _db.db.matches.update_one(
                {"_id": match["_id"], "status": {"$in": ACTIVE_MATCH_STATUSES}},
                {"$set": {
                    "status": MatchStatus.finished.value,
                    "last_polled_at": now,
                    "updated_at": now,
                }},
            )
        except Exception:
            logger.exception("Safety timeout write failed for match %s", str(match["_id"]))
            continue
        if update.modified_count:
            closed += 1
            logger.warning(
                "Safety timeout: closed %s vs %s (fixture %s) without a score, needs review",
                match.get("home_team", "?"), match.get("away_team", "?"), match.get("external_id"),
            )
    return closed


async def _apply_status_report(match: dict, report: dict, now: datetime) -> tuple[bool, int]:
    """Persist a status transition if anything changed. Returns (updated, bets graded)."""
    current = MatchStatus(match.get("status") or MatchStatus.pending.value)
    new_status = map_provider_status(report.get("status_code"), current)
    home_score = report.get("home_score")
    away_score = report.get("away_score")

    status_changed = new_status != current
    score_changed = new_status == MatchStatus.finished and (
        (home_score, away_score) != (match.get("home_score"), match.get("away_score"))
    )
    if not status_changed and not score_changed:
        return False, 0

    fields: dict = {
        "status": new_status.value,
        "elapsed": report.get("elapsed"),
        "last_polled_at": now,
        "updated_at": now,
    }
    if new_status == MatchStatus.finished:
        fields["home_score"] = home_score
        fields["away_score"] = away_score

    await _db.db.matches.update_one({"_id": match["_id"]}, {"$set": fields})
    logger.info(
        "Updated %s vs %s: %s -> %s (%s-%s)",
        match.get("home_team", "?"), match.get("away_team", "?"),
        current.value, new_status.value, home_score, away_score,
    )

    if new_status == MatchStatus.finished and _has_score(home_score, away_score):
        return True, await grade_match_bets(str(match["_id"]), home_score, away_score)
    return True, 0


async def check_match_statuses(
    status_source: StatusSource,
    *,
    delay: Optional[float] = None,
) -> dict:
    """One poll over all pending/in-progress matches.

    Matches are queried one at a time with `delay` seconds between queries.
    A failing match is logged and skipped; the next cycle retries it.
    """
    delay = settings.MATCH_POLL_DELAY_SECONDS if delay is None else delay
    now = utcnow()
    summary = {"updated": 0, "evaluated": 0, "timed_out": 0}

    summary["timed_out"] = await _apply_safety_timeout(now)

    matches = await _db.db.matches.find(
        {"status": {"$in": ACTIVE_MATCH_STATUSES}}
    ).sort("kickoff_at", 1).to_list(length=_MATCH_BATCH_LIMIT)
    _warn_if_truncated(matches, _MATCH_BATCH_LIMIT, "active matches")
    if not matches:
        logger.info("No pending or in-progress matches")
        return summary

    logger.info("Checking %d matches", len(matches))
    for match in matches:
        external_id = match.get("external_id")
        try:
            report = await status_source.get_match_status(external_id)
            if report is None:
                logger.warning("Fixture %s unknown to status source, skipping", external_id)
            else:
                updated, evaluated = await _apply_status_report(match, report, now)
                summary["updated"] += int(updated)
                summary["evaluated"] += evaluated
        except Exception as e:
            logger.error("Status check failed for fixture %s: %s", external_id, e)

        if delay:
            await asyncio.sleep(delay)

    logger.info(
        "Status check done: %d matches updated, %d bets evaluated, %d timed out",
        summary["updated"], summary["evaluated"], summary["timed_out"],
    )
    return summary


# ---------- Re-evaluation pass ----------

async def _fetch_missing_scores(
    status_source: StatusSource, now: datetime, delay: float,
) -> int:
    """Ask the source again for matches that should be over but have no score."""
    score_after = now - timedelta(hours=settings.REEVALUATE_SCORE_AFTER_HOURS)
    oldest = now - timedelta(days=settings.REEVALUATE_MAX_AGE_DAYS)
    candidates = await _db.db.matches.find({
        "status": {"$ne": MatchStatus.cancelled.value},
        "$or": [{"home_score": None}, {"away_score": None}],
        "kickoff_at": {"$lte": score_after, "$gte": oldest},
    }).sort("kickoff_at", 1).to_list(length=_SCORE_FETCH_LIMIT)
    _warn_if_truncated(candidates, _SCORE_FETCH_LIMIT, "missing-score matches")

    fetched = 0
    for match in candidates:
        external_id = match.get("external_id")
        try:
            report = await status_source.get_match_status(external_id)
            if report is not None:
                status = map_provider_status(report.get("status_code"), MatchStatus.pending)
                home_score = report.get("home_score")
                away_score = report.get("away_score")
                if status == MatchStatus.finished and _has_score(home_score, away_score):
                    await _db.db.matches.update_one(
                        {"_id": match["_id"]},
                        {"$set": {
                            "status": MatchStatus.finished.value,
                            "home_score": home_score,
                            "away_score": away_score,
                            "elapsed": report.get("elapsed"),
                            "last_polled_at": now,
                            "updated_at": now,
                        }},
                    )
                    fetched += 1
                    logger.info(
                        "Fetched score: %s %d-%d %s",
                        match.get("home_team", "?"), home_score, away_score, match.get("away_team", "?"),
                    )
                elif status == MatchStatus.cancelled:
                    await _db.db.matches.update_one(
                        {"_id": match["_id"]},
                        {"$set": {
                            "status": MatchStatus.cancelled.value,
                            "last_polled_at": now,
                            "updated_at": now,
                        }},
                    )
                    logger.info(
                        "Match cancelled: %s vs %s",
                        match.get("home_team", "?"), match.get("away_team", "?"),
                    )
        except Exception as e:
            logger.error("Score fetch failed for fixture %s: %s", external_id, e)

        if delay:
            await asyncio.sleep(delay)
    return fetched


async def reevaluate_finished_matches(
    status_source: StatusSource,
    *,
    delay: Optional[float] = None,
) -> dict:
    """Fill in missing scores, grade pending bets on every scored finished match,
    then re-aggregate every pending coupon."""
    delay = settings.REEVALUATE_DELAY_SECONDS if delay is None else delay
    now = utcnow()

    scores_fetched = await _fetch_missing_scores(status_source, now, delay)

    pending_match_ids = await _db.db.bets.distinct("match_id", {"result": BetResult.pending.value})
    object_ids = [ObjectId(mid) for mid in pending_match_ids if ObjectId.is_valid(str(mid))]
    finished = []
    if object_ids:
        finished = await _db.db.matches.find({
            "_id": {"$in": object_ids},
            "status": MatchStatus.finished.value,
            "home_score": {"$ne": None},
            "away_score": {"$ne": None},
        }).to_list(length=_MATCH_BATCH_LIMIT)
        _warn_if_truncated(finished, _MATCH_BATCH_LIMIT, "finished matches with pending bets")

    evaluated = 0
    for match in finished:
        try:
            evaluated += await grade_match_bets(
                str(match["_id"]), match["home_score"], match["away_score"],
            )
        except Exception as e:
            logger.error("Re-evaluation failed for match %s: %s", str(match["_id"]), e)

    # Full sweep over pending coupons: picks up coupons whose legs were graded
    # earlier but whose own write failed or never happened.
    try:
        await update_coupon_results()
    except Exception:
        logger.exception("Coupon sweep failed during re-evaluation")

    if scores_fetched or evaluated:
        logger.info(
            "Re-evaluation done: %d scores fetched, %d bets evaluated",
            scores_fetched, evaluated,
        )
    return {"evaluated": evaluated, "scores_fetched": scores_fetched}


async def run_match_status_cycle(status_source: StatusSource) -> dict:
    """Full cycle: status poll followed by the re-evaluation pass."""
    checked = await check_match_statuses(status_source)
    reevaluated = await reevaluate_finished_matches(status_source)
    summary = {
        **checked,
        "reevaluated": reevaluated["evaluated"],
        "scores_fetched": reevaluated["scores_fetched"],
    }
    await set_synced(WORKER_ID, summary)
    return summary
