"""Tracked match models: lifecycle status of a published fixture.

Stored shape of a `matches` document: external_id (API-Football fixture id),
home_team, away_team, kickoff_at, status, home_score / away_score (set once
finished; a match closed by the safety timeout has none until the
re-evaluation pass fetches them), elapsed, last_polled_at, updated_at.
"""

from enum import Enum


class MatchStatus(str, Enum):
    pending = "pending"            # Published, not kicked off yet
    in_progress = "in_progress"    # Provider reports a live phase
    finished = "finished"          # Ended (or closed by the safety timeout)
    cancelled = "cancelled"        # Postponed, abandoned, awarded, walkover


ACTIVE_MATCH_STATUSES = [MatchStatus.pending.value, MatchStatus.in_progress.value]
