"""
backend/kupon/workers/scheduler.py

Purpose:
    Owns the interval job for the match status cycle. Created by the
    application bootstrap with an injected status source; the admin router
    reaches it through app.state.

    At most one cycle runs at a time: the interval job and manual triggers
    share one asyncio.Lock, and APScheduler is told not to overlap instances.

Dependencies:
    - apscheduler
    - kupon.workers.match_status
"""

import asyncio
import logging
from datetime import timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

import kupon.database as _db
from kupon.config import settings
from kupon.providers.base import StatusSource
from kupon.utils import utcnow
from kupon.workers.match_status import reevaluate_finished_matches, run_match_status_cycle

logger = logging.getLogger("kupon.scheduler")

JOB_ID = "match_status"
_AUTOMATION_META_ID = "automation_settings"


class MatchStatusScheduler:
    def __init__(
        self,
        status_source: StatusSource,
        *,
        interval_minutes: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.status_source = status_source
        self.interval_minutes = interval_minutes or settings.MATCH_STATUS_INTERVAL_MINUTES
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._lock = asyncio.Lock()
        self.last_summary: Optional[dict] = None

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def enabled(self) -> bool:
        return self._scheduler.get_job(JOB_ID) is not None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Match status scheduler started")

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Match status scheduler stopped")

    def enable(self, *, run_immediately: bool = False) -> bool:
        """Register the interval job. Returns False if it was already registered."""
        if self.enabled:
            return False
        kwargs = {}
        if run_immediately:
            kwargs["next_run_time"] = utcnow()
        self._scheduler.add_job(
            self._run_scheduled,
            "interval",
            minutes=self.interval_minutes,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **kwargs,
        )
        logger.info("Match status job enabled (every %d min)", self.interval_minutes)
        return True

    def disable(self) -> bool:
        """Remove the interval job. Returns False if it was not registered."""
        if not self.enabled:
            return False
        self._scheduler.remove_job(JOB_ID)
        logger.info("Match status job disabled")
        return True

    async def run_now(self) -> dict:
        """Run one full cycle, waiting for a running cycle to finish first.

        Errors propagate to the caller; already committed results stay.
        """
        async with self._lock:
            summary = await run_match_status_cycle(self.status_source)
            self.last_summary = summary
            return summary

    async def run_reevaluation(self) -> dict:
        async with self._lock:
            return await reevaluate_finished_matches(self.status_source)

    async def _run_scheduled(self) -> None:
        try:
            await self.run_now()
        except Exception:
            logger.exception("Scheduled match status cycle failed")


async def load_automation_enabled() -> bool:
    doc = await _db.db.meta.find_one({"_id": _AUTOMATION_META_ID})
    return bool(doc and doc.get("enabled"))


async def set_automation_enabled(
    scheduler: MatchStatusScheduler,
    enabled: bool,
    *,
    run_immediately: bool = False,
    persist: bool = True,
) -> dict:
    if enabled:
        changed = scheduler.enable(run_immediately=run_immediately)
    else:
        changed = scheduler.disable()

    if persist:
        await _db.db.meta.update_one(
            {"_id": _AUTOMATION_META_ID},
            {"$set": {"enabled": scheduler.enabled, "updated_at": utcnow()}},
            upsert=True,
        )

    return {"enabled": scheduler.enabled, "changed": changed}
