"""Bet and coupon result enum plus the admin API payloads.

Stored shapes: a `bets` document carries match_id (str of the match _id), a
free-text label, kind (best_bet | coupon_leg), result and graded_at. A
`coupons` document carries name, leg_ids (str bet ids), result and resolved_at.
result moves from pending to won/lost exactly once.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class BetResult(str, Enum):
    pending = "pending"
    won = "won"
    lost = "lost"


class MatchStatusRunSummary(BaseModel):
    """Counts returned by a manually triggered grading cycle."""
    updated: int = 0
    evaluated: int = 0
    timed_out: int = 0
    reevaluated: int = 0
    scores_fetched: int = 0


class AutomationToggle(BaseModel):
    enabled: bool


class AutomationStatus(BaseModel):
    enabled: bool
    running: bool
    interval_minutes: int
    last_cycle_at: Optional[datetime] = None
