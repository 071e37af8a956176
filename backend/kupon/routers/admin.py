"""
backend/kupon/routers/admin.py

Purpose:
    Operator endpoints for the match status cycle: manual trigger,
    re-evaluation, and the automation toggle.

Dependencies:
    - kupon.workers.scheduler
    - kupon.workers._state
"""

import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from kupon.config import settings
from kupon.models.bet import AutomationStatus, AutomationToggle, MatchStatusRunSummary
from kupon.workers._state import get_synced_at
from kupon.workers.match_status import WORKER_ID
from kupon.workers.scheduler import MatchStatusScheduler, set_automation_enabled

logger = logging.getLogger("kupon.admin")
router = APIRouter(prefix="/api/admin/match-status", tags=["admin"])


async def verify_admin_key(x_admin_key: str = Header(...)) -> None:
    """Verify the operator API key."""
    if not settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key not configured on server.",
        )
    if not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key.",
        )


def get_scheduler(request: Request) -> MatchStatusScheduler:
    return request.app.state.match_status_scheduler


@router.post("/check", dependencies=[Depends(verify_admin_key)])
async def trigger_check(
    scheduler: MatchStatusScheduler = Depends(get_scheduler),
) -> MatchStatusRunSummary:
    """Run one status cycle now and report what changed."""
    logger.info("Manual match status check requested")
    summary = await scheduler.run_now()
    return MatchStatusRunSummary(**summary)


@router.post("/reevaluate", dependencies=[Depends(verify_admin_key)])
async def trigger_reevaluation(
    scheduler: MatchStatusScheduler = Depends(get_scheduler),
) -> MatchStatusRunSummary:
    """Fetch missing scores and grade pending bets on finished matches."""
    logger.info("Manual re-evaluation requested")
    result = await scheduler.run_reevaluation()
    return MatchStatusRunSummary(
        reevaluated=result["evaluated"],
        scores_fetched=result["scores_fetched"],
    )


@router.get("/automation", dependencies=[Depends(verify_admin_key)])
async def get_automation(
    scheduler: MatchStatusScheduler = Depends(get_scheduler),
) -> AutomationStatus:
    return AutomationStatus(
        enabled=scheduler.enabled,
        running=scheduler.busy,
        interval_minutes=scheduler.interval_minutes,
        last_cycle_at=await get_synced_at(WORKER_ID),
    )


@router.post("/automation", dependencies=[Depends(verify_admin_key)])
async def update_automation(
    body: AutomationToggle,
    scheduler: MatchStatusScheduler = Depends(get_scheduler),
) -> AutomationStatus:
    result = await set_automation_enabled(scheduler, body.enabled, run_immediately=body.enabled)
    logger.info("Automation set to %s (changed=%s)", result["enabled"], result["changed"])
    return AutomationStatus(
        enabled=scheduler.enabled,
        running=scheduler.busy,
        interval_minutes=scheduler.interval_minutes,
        last_cycle_at=await get_synced_at(WORKER_ID),
    )
