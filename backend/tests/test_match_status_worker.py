"""
backend/tests/test_match_status_worker.py

Purpose:
    Match status poller and re-evaluation pass against an in-memory store:
    transitions, write suppression, safety timeout, crash recovery.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from bson import ObjectId

from _fake_mongo import FakeDB
from kupon.models.match import MatchStatus
from kupon.services import coupon_service
from kupon.utils import utcnow
from kupon.workers import _state
from kupon.workers import match_status
from kupon.workers.match_status import map_provider_status


class _FakeSource:
    def __init__(self, reports=None, errors=None):
        self.reports = reports or {}
        self.errors = errors or {}
        self.calls: list = []

    async def get_match_status(self, external_id):
        self.calls.append(external_id)
        if external_id in self.errors:
            raise self.errors[external_id]
        return self.reports.get(external_id)


def _report(code, home=None, away=None, elapsed=None):
    return {"status_code": code, "elapsed": elapsed, "home_score": home, "away_score": away}


def _match(external_id, status="pending", minutes_ago=30, **extra):
    doc = {
        "_id": ObjectId(),
        "external_id": external_id,
        "home_team": "Galatasaray",
        "away_team": "Fenerbahçe",
        "kickoff_at": utcnow() - timedelta(minutes=minutes_ago),
        "status": status,
        "home_score": None,
        "away_score": None,
    }
    doc.update(extra)
    return doc


def _install(monkeypatch, fake_db):
    monkeypatch.setattr(match_status._db, "db", fake_db, raising=False)
    monkeypatch.setattr(coupon_service._db, "db", fake_db, raising=False)
    monkeypatch.setattr(_state._db, "db", fake_db, raising=False)


@pytest.mark.parametrize(
    "code,current,expected",
    [
        ("1H", MatchStatus.pending, MatchStatus.in_progress),
        ("HT", MatchStatus.pending, MatchStatus.in_progress),
        ("2H", MatchStatus.in_progress, MatchStatus.in_progress),
        ("ET", MatchStatus.in_progress, MatchStatus.in_progress),
        ("P", MatchStatus.in_progress, MatchStatus.in_progress),
        ("BT", MatchStatus.in_progress, MatchStatus.in_progress),
        ("LIVE", MatchStatus.pending, MatchStatus.in_progress),
        ("FT", MatchStatus.in_progress, MatchStatus.finished),
        ("AET", MatchStatus.in_progress, MatchStatus.finished),
        ("PEN", MatchStatus.in_progress, MatchStatus.finished),
        ("PST", MatchStatus.pending, MatchStatus.cancelled),
        ("CANC", MatchStatus.pending, MatchStatus.cancelled),
        ("ABD", MatchStatus.in_progress, MatchStatus.cancelled),
        ("AWD", MatchStatus.pending, MatchStatus.cancelled),
        ("WO", MatchStatus.pending, MatchStatus.cancelled),
        ("NS", MatchStatus.pending, MatchStatus.pending),
        ("SUSP", MatchStatus.in_progress, MatchStatus.in_progress),
        ("ft", MatchStatus.in_progress, MatchStatus.finished),
        (None, MatchStatus.in_progress, MatchStatus.in_progress),
    ],
)
def test_map_provider_status(code, current, expected):
    assert map_provider_status(code, current) == expected


@pytest.mark.asyncio
async def test_kickoff_moves_match_to_in_progress_without_grading(monkeypatch):
    match = _match(101)
    bet = {"_id": ObjectId(), "match_id": str(match["_id"]), "label": "2.5 Üst", "result": "pending"}
    fake_db = FakeDB(matches=[match], bets=[bet])
    _install(monkeypatch, fake_db)

    summary = await match_status.check_match_statuses(_FakeSource({101: _report("1H", 0, 0, 12)}), delay=0)

    assert summary == {"updated": 1, "evaluated": 0, "timed_out": 0}
    stored = fake_db.matches.get(match["_id"])
    assert stored["status"] == "in_progress"
    assert stored["elapsed"] == 12
    # Scores are only persisted for finished matches.
    assert stored["home_score"] is None
    assert fake_db.bets.get(bet["_id"])["result"] == "pending"


@pytest.mark.asyncio
async def test_unchanged_status_is_not_written(monkeypatch):
    match = _match(102, status="in_progress", minutes_ago=70)
    fake_db = FakeDB(matches=[match])
    _install(monkeypatch, fake_db)

    summary = await match_status.check_match_statuses(_FakeSource({102: _report("2H", 1, 0, 70)}), delay=0)

    assert summary["updated"] == 0
    assert fake_db.matches.updates == []


@pytest.mark.asyncio
async def test_full_time_grades_bets_and_resolves_coupon(monkeypatch):
    match = _match(103, status="in_progress", minutes_ago=110)
    mid = str(match["_id"])
    over = {"_id": ObjectId(), "match_id": mid, "label": "2.5 Üst", "result": "pending"}
    btts = {"_id": ObjectId(), "match_id": mid, "label": "KG Var", "result": "pending"}
    home = {"_id": ObjectId(), "match_id": mid, "label": "MS 1", "result": "pending"}
    coupon_id = ObjectId()
    fake_db = FakeDB(
        matches=[match],
        bets=[over, btts, home],
        coupons=[{"_id": coupon_id, "leg_ids": [str(over["_id"]), str(btts["_id"])], "result": "pending"}],
    )
    _install(monkeypatch, fake_db)

    summary = await match_status.check_match_statuses(_FakeSource({103: _report("FT", 3, 2, 90)}), delay=0)

    assert summary == {"updated": 1, "evaluated": 3, "timed_out": 0}
    stored = fake_db.matches.get(match["_id"])
    assert (stored["status"], stored["home_score"], stored["away_score"]) == ("finished", 3, 2)
    assert fake_db.bets.get(over["_id"])["result"] == "won"
    assert fake_db.bets.get(btts["_id"])["result"] == "won"
    assert fake_db.bets.get(home["_id"])["result"] == "won"
    assert fake_db.bets.get(home["_id"])["graded_at"] is not None
    assert fake_db.coupons.get(coupon_id)["result"] == "won"


@pytest.mark.asyncio
async def test_graded_bets_are_never_rewritten(monkeypatch):
    match = _match(104, status="in_progress", minutes_ago=110)
    graded = {"_id": ObjectId(), "match_id": str(match["_id"]), "label": "MS 2", "result": "won"}
    fake_db = FakeDB(matches=[match], bets=[graded])
    _install(monkeypatch, fake_db)

    summary = await match_status.check_match_statuses(_FakeSource({104: _report("FT", 2, 0)}), delay=0)

    assert summary["evaluated"] == 0
    assert fake_db.bets.get(graded["_id"])["result"] == "won"
    assert fake_db.bets.updates == []


@pytest.mark.asyncio
async def test_failing_match_does_not_stop_the_cycle(monkeypatch):
    broken = _match(105, minutes_ago=60)
    healthy = _match(106, minutes_ago=20)
    fake_db = FakeDB(matches=[broken, healthy])
    _install(monkeypatch, fake_db)
    source = _FakeSource({106: _report("1H")}, errors={105: RuntimeError("timeout")})

    summary = await match_status.check_match_statuses(source, delay=0)

    assert source.calls == [105, 106]
    assert summary["updated"] == 1
    assert fake_db.matches.get(broken["_id"])["status"] == "pending"
    assert fake_db.matches.get(healthy["_id"])["status"] == "in_progress"


@pytest.mark.asyncio
async def test_unknown_fixture_is_skipped(monkeypatch):
    match = _match(107)
    fake_db = FakeDB(matches=[match])
    _install(monkeypatch, fake_db)

    summary = await match_status.check_match_statuses(_FakeSource({}), delay=0)

    assert summary == {"updated": 0, "evaluated": 0, "timed_out": 0}
    assert fake_db.matches.updates == []


@pytest.mark.asyncio
async def test_safety_timeout_finishes_stale_match_without_grading(monkeypatch):
    stale = _match(108, status="in_progress", minutes_ago=5 * 60)
    bet = {"_id": ObjectId(), "match_id": str(stale["_id"]), "label": "KG Yok", "result": "pending"}
    fake_db = FakeDB(matches=[stale], bets=[bet])
    _install(monkeypatch, fake_db)
    source = _FakeSource({108: _report("2H", 1, 1)})

    summary = await match_status.check_match_statuses(source, delay=0)

    assert summary["timed_out"] == 1
    assert source.calls == []
    stored = fake_db.matches.get(stale["_id"])
    assert stored["status"] == "finished"
    assert stored["home_score"] is None
    assert fake_db.bets.get(bet["_id"])["result"] == "pending"


@pytest.mark.asyncio
async def test_second_check_run_is_a_noop(monkeypatch):
    match = _match(109, status="in_progress", minutes_ago=110)
    bet = {"_id": ObjectId(), "match_id": str(match["_id"]), "label": "1-1", "result": "pending"}
    fake_db = FakeDB(matches=[match], bets=[bet])
    _install(monkeypatch, fake_db)
    source = _FakeSource({109: _report("FT", 1, 1)})

    first = await match_status.check_match_statuses(source, delay=0)
    writes = len(fake_db.matches.updates) + len(fake_db.bets.updates)
    second = await match_status.check_match_statuses(source, delay=0)

    assert first["evaluated"] == 1
    assert second == {"updated": 0, "evaluated": 0, "timed_out": 0}
    assert len(fake_db.matches.updates) + len(fake_db.bets.updates) == writes


@pytest.mark.asyncio
async def test_reevaluation_fetches_missing_score_and_grades(monkeypatch):
    # Timed out earlier: finished, no score.
    match = _match(110, status="finished", minutes_ago=5 * 60)
    bet = {"_id": ObjectId(), "match_id": str(match["_id"]), "label": "KG Yok", "result": "pending"}
    fake_db = FakeDB(matches=[match], bets=[bet])
    _install(monkeypatch, fake_db)

    result = await match_status.reevaluate_finished_matches(
        _FakeSource({110: _report("FT", 2, 0)}), delay=0,
    )

    assert result == {"evaluated": 1, "scores_fetched": 1}
    stored = fake_db.matches.get(match["_id"])
    assert (stored["home_score"], stored["away_score"]) == (2, 0)
    assert fake_db.bets.get(bet["_id"])["result"] == "won"


@pytest.mark.asyncio
async def test_reevaluation_marks_cancelled_fixtures(monkeypatch):
    match = _match(111, status="pending", minutes_ago=4 * 60)
    fake_db = FakeDB(matches=[match])
    _install(monkeypatch, fake_db)

    result = await match_status.reevaluate_finished_matches(_FakeSource({111: _report("PST")}), delay=0)

    assert result == {"evaluated": 0, "scores_fetched": 0}
    assert fake_db.matches.get(match["_id"])["status"] == "cancelled"


@pytest.mark.asyncio
async def test_reevaluation_ignores_matches_past_max_age(monkeypatch):
    old = _match(112, status="finished", minutes_ago=10 * 24 * 60)
    fake_db = FakeDB(matches=[old])
    _install(monkeypatch, fake_db)
    source = _FakeSource({112: _report("FT", 1, 0)})

    await match_status.reevaluate_finished_matches(source, delay=0)

    assert source.calls == []


@pytest.mark.asyncio
async def test_crash_recovery_grades_finished_match_with_pending_bets(monkeypatch):
    # Previous cycle stored the final score but died before grading.
    match = _match(113, status="finished", minutes_ago=3 * 60, home_score=1, away_score=0)
    mid = str(match["_id"])
    win = {"_id": ObjectId(), "match_id": mid, "label": "MS 1", "result": "pending"}
    loss = {"_id": ObjectId(), "match_id": mid, "label": "X2", "result": "pending"}
    coupon_id = ObjectId()
    fake_db = FakeDB(
        matches=[match],
        bets=[win, loss],
        coupons=[{"_id": coupon_id, "leg_ids": [str(win["_id"]), str(loss["_id"])], "result": "pending"}],
    )
    _install(monkeypatch, fake_db)
    source = _FakeSource()

    result = await match_status.reevaluate_finished_matches(source, delay=0)

    assert result == {"evaluated": 2, "scores_fetched": 0}
    assert source.calls == []
    assert fake_db.bets.get(win["_id"])["result"] == "won"
    assert fake_db.bets.get(loss["_id"])["result"] == "lost"
    assert fake_db.coupons.get(coupon_id)["result"] == "lost"


@pytest.mark.asyncio
async def test_failed_bet_write_is_retried_next_cycle(monkeypatch):
    match = _match(114, status="finished", minutes_ago=3 * 60, home_score=0, away_score=0)
    bet = {"_id": ObjectId(), "match_id": str(match["_id"]), "label": "Beraberlik", "result": "pending"}
    fake_db = FakeDB(matches=[match], bets=[bet])
    _install(monkeypatch, fake_db)

    fake_db.bets.fail_update_for.add(bet["_id"])
    first = await match_status.reevaluate_finished_matches(_FakeSource(), delay=0)
    assert first["evaluated"] == 0
    assert fake_db.bets.get(bet["_id"])["result"] == "pending"

    fake_db.bets.fail_update_for.clear()
    second = await match_status.reevaluate_finished_matches(_FakeSource(), delay=0)
    assert second["evaluated"] == 1
    assert fake_db.bets.get(bet["_id"])["result"] == "won"


@pytest.mark.asyncio
async def test_run_cycle_records_worker_state(monkeypatch):
    match = _match(115, status="in_progress", minutes_ago=110)
    bet = {"_id": ObjectId(), "match_id": str(match["_id"]), "label": "1.5 Alt", "result": "pending"}
    fake_db = FakeDB(matches=[match], bets=[bet])
    _install(monkeypatch, fake_db)
    monkeypatch.setattr(match_status.settings, "MATCH_POLL_DELAY_SECONDS", 0)
    monkeypatch.setattr(match_status.settings, "REEVALUATE_DELAY_SECONDS", 0)

    summary = await match_status.run_match_status_cycle(_FakeSource({115: _report("FT", 0, 0)}))

    assert summary == {
        "updated": 1,
        "evaluated": 1,
        "timed_out": 0,
        "reevaluated": 0,
        "scores_fetched": 0,
    }
    state = fake_db.worker_state.get(match_status.WORKER_ID)
    assert state["last_summary"] == summary
    assert state["synced_at"] is not None
    assert await _state.get_synced_at(match_status.WORKER_ID) is not None


@pytest.mark.asyncio
async def test_coupon_write_failure_is_resolved_by_a_later_cycle(monkeypatch):
    match = _match(116, status="finished", minutes_ago=3 * 60, home_score=1, away_score=0)
    bet = {"_id": ObjectId(), "match_id": str(match["_id"]), "label": "MS 1", "result": "pending"}
    coupon_id = ObjectId()
    fake_db = FakeDB(
        matches=[match],
        bets=[bet],
        coupons=[{"_id": coupon_id, "leg_ids": [str(bet["_id"])], "result": "pending"}],
    )
    _install(monkeypatch, fake_db)
    monkeypatch.setattr(match_status.settings, "MATCH_POLL_DELAY_SECONDS", 0)
    monkeypatch.setattr(match_status.settings, "REEVALUATE_DELAY_SECONDS", 0)

    fake_db.coupons.fail_update_for.add(coupon_id)
    await match_status.run_match_status_cycle(_FakeSource())
    assert fake_db.bets.get(bet["_id"])["result"] == "won"
    assert fake_db.coupons.get(coupon_id)["result"] == "pending"

    # The leg is no longer pending, so only the coupon sweep can finish the job.
    fake_db.coupons.fail_update_for.clear()
    await match_status.run_match_status_cycle(_FakeSource())
    assert fake_db.coupons.get(coupon_id)["result"] == "won"


@pytest.mark.asyncio
async def test_reevaluation_refetches_match_missing_only_away_score(monkeypatch):
    match = _match(117, status="finished", minutes_ago=3 * 60, home_score=2, away_score=None)
    bet = {"_id": ObjectId(), "match_id": str(match["_id"]), "label": "2.5 Üst", "result": "pending"}
    fake_db = FakeDB(matches=[match], bets=[bet])
    _install(monkeypatch, fake_db)
    source = _FakeSource({117: _report("FT", 2, 1)})

    result = await match_status.reevaluate_finished_matches(source, delay=0)

    assert source.calls == [117]
    assert result == {"evaluated": 1, "scores_fetched": 1}
    assert fake_db.matches.get(match["_id"])["away_score"] == 1
    assert fake_db.bets.get(bet["_id"])["result"] == "won"


@pytest.mark.asyncio
async def test_batch_cap_is_logged(monkeypatch, caplog):
    fake_db = FakeDB(matches=[_match(118), _match(119)])
    _install(monkeypatch, fake_db)
    monkeypatch.setattr(match_status, "_MATCH_BATCH_LIMIT", 1)

    summary = await match_status.check_match_statuses(_FakeSource(), delay=0)

    assert summary["updated"] == 0
    assert any("Batch cap reached" in r.getMessage() for r in caplog.records)
