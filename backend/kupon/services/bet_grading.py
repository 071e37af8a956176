"""
backend/kupon/services/bet_grading.py

Purpose:
    Outcome grading engine. Turns a free-text bet label plus a final score into
    a won/lost verdict.

    Grading runs in two steps: parse_bet_label() maps the label onto a typed
    outcome (TotalGoals, BothTeamsScore, MatchResult, DoubleChance, Handicap,
    ExactScore), evaluate_outcome() applies the score. Categories are tried in
    a fixed priority order and the first hit wins; the exact-score pattern is
    the last resort. Labels that match nothing grade as lost and are logged
    for operators.

Dependencies:
    - re
    - dataclasses
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

logger = logging.getLogger("kupon.bet_grading")


# ---------- Outcome variants ----------

@dataclass(frozen=True)
class TotalGoals:
    line: float      # always N.5
    side: str        # "over" | "under"


@dataclass(frozen=True)
class BothTeamsScore:
    yes: bool


@dataclass(frozen=True)
class MatchResult:
    pick: str        # "1" | "X" | "2"


@dataclass(frozen=True)
class DoubleChance:
    pick: str        # "1X" | "X2" | "12"


@dataclass(frozen=True)
class Handicap:
    team: str        # "home" | "away"
    line: float      # signed, added to the team's goals


@dataclass(frozen=True)
class ExactScore:
    home: int
    away: int


BetOutcome = Union[TotalGoals, BothTeamsScore, MatchResult, DoubleChance, Handicap, ExactScore]


# ---------- Label vocabulary (matched against the normalized label) ----------

_OVER_WORDS = ("üst", "ust", "over")
_SIDE = r"(üst|ust|over|alt|under)"
_LINE = r"(?<![\d.])([0-5])\.5(?![\d])"

_TOTAL_LINE_FIRST = re.compile(_LINE + r"\s*(?:gol\s+|goals?\s+)?" + _SIDE)
_TOTAL_SIDE_FIRST = re.compile(r"\b" + _SIDE + r"\s*(?:gol\s+|goals?\s+)?" + _LINE)

_BTTS_NO = re.compile(
    r"\b(?:kg\s*yok|btts\s*:?\s*no|kar[sş]ilikli\s+gol\s+yok|both teams to score\s*[:\-]?\s*no)\b"
)
_BTTS_YES = re.compile(
    r"\b(?:kg\s*var|btts(?:\s*:?\s*yes)?|kar[sş]ilikli\s+gol(?:\s+var)?"
    r"|both teams to score(?:\s*[:\-]?\s*yes)?)\b"
)

# "ev veya beraberlik", "home or draw", "1/x" belong to double chance.
_DISJUNCTION = re.compile(r"\bveya\b|\bor\b|/")

_RESULT_CODES = {
    "1": "1", "ms1": "1", "ms 1": "1", "ms-1": "1",
    "x": "X", "msx": "X", "ms x": "X", "ms-x": "X", "0": "X", "ms 0": "X",
    "2": "2", "ms2": "2", "ms 2": "2", "ms-2": "2",
}
_RESULT_PHRASES = (
    ("1", re.compile(r"\b(?:ev sahibi kazanir|ev kazanir|ev sahibi galibiyeti|home win|home to win)\b")),
    ("2", re.compile(r"\b(?:deplasman kazanir|deplasman galibiyeti|konuk kazanir|away win|away to win)\b")),
    ("X", re.compile(r"\b(?:beraberlik|berabere|draw)\b")),
)

_DOUBLE_CHANCE_CODE = re.compile(
    r"(?<![\w.:/-])(1x|x2|12|1\s*/\s*x|x\s*/\s*2|1\s*/\s*2)(?![\w.:/-])"
)
_DOUBLE_CHANCE_PHRASES = (
    ("1X", re.compile(r"\b(?:ev(?: sahibi)? veya beraberlik|home or draw|1 or x)\b")),
    ("X2", re.compile(r"\b(?:beraberlik veya deplasman|draw or away|x or 2)\b")),
    ("12", re.compile(r"\b(?:ev(?: sahibi)? veya deplasman|home or away|1 or 2|gol olur)\b")),
)

_HANDICAP = re.compile(
    r"\b(ev sahibi|ev|home|deplasman|dep|away)\s*\(?\s*([+-]\d+\.5)(?![\d])"
)

_EXACT_SCORE = re.compile(r"(\d+)\s*[-:]\s*(\d+)")


def normalize_label(label: object) -> str:
    """Trim, case-fold and canonicalize a label for matching.

    Turkish dotless/dotted i collapse to plain "i", decimal commas become dots
    and runs of whitespace collapse to one space.
    """
    text = str(label or "").strip().casefold()
    text = text.replace("\u0307", "").replace("ı", "i")
    text = re.sub(r"(\d),(\d)", r"\1.\2", text)
    return re.sub(r"\s+", " ", text)


# ---------- Parsing ----------

def _parse_total_goals(text: str) -> Optional[TotalGoals]:
    for pattern, line_group, side_group in (
        (_TOTAL_LINE_FIRST, 1, 2),
        (_TOTAL_SIDE_FIRST, 2, 1),
    ):
        m = pattern.search(text)
        if m:
            side = "over" if m.group(side_group) in _OVER_WORDS else "under"
            return TotalGoals(line=int(m.group(line_group)) + 0.5, side=side)
    return None


def _parse_btts(text: str) -> Optional[BothTeamsScore]:
    if _BTTS_NO.search(text):
        return BothTeamsScore(yes=False)
    if _BTTS_YES.search(text):
        return BothTeamsScore(yes=True)
    return None


def _parse_match_result(text: str) -> Optional[MatchResult]:
    if text in _RESULT_CODES:
        return MatchResult(pick=_RESULT_CODES[text])
    if _DISJUNCTION.search(text):
        return None
    for pick, pattern in _RESULT_PHRASES:
        if pattern.search(text):
            return MatchResult(pick=pick)
    return None


def _parse_double_chance(text: str) -> Optional[DoubleChance]:
    m = _DOUBLE_CHANCE_CODE.search(text)
    if m:
        return DoubleChance(pick=re.sub(r"[\s/]", "", m.group(1)).upper())
    for pick, pattern in _DOUBLE_CHANCE_PHRASES:
        if pattern.search(text):
            return DoubleChance(pick=pick)
    return None


def _parse_handicap(text: str) -> Optional[Handicap]:
    m = _HANDICAP.search(text)
    if not m:
        return None
    team = "home" if m.group(1) in ("ev", "ev sahibi", "home") else "away"
    return Handicap(team=team, line=float(m.group(2)))


def _parse_exact_score(text: str) -> Optional[ExactScore]:
    m = _EXACT_SCORE.search(text)
    if not m:
        return None
    return ExactScore(home=int(m.group(1)), away=int(m.group(2)))


# Priority order: first parser that recognizes the label wins.
_PARSERS = (
    _parse_total_goals,
    _parse_btts,
    _parse_match_result,
    _parse_double_chance,
    _parse_handicap,
    _parse_exact_score,
)


def parse_bet_label(label: object) -> Optional[BetOutcome]:
    """Map a free-text label onto a typed outcome, or None when unrecognized."""
    text = normalize_label(label)
    if not text:
        return None
    for parser in _PARSERS:
        outcome = parser(text)
        if outcome is not None:
            return outcome
    return None


# ---------- Evaluation ----------

def evaluate_outcome(outcome: BetOutcome, home_score: int, away_score: int) -> bool:
    """Decide a parsed outcome against the final score."""
    if isinstance(outcome, TotalGoals):
        total = home_score + away_score
        if outcome.side == "over":
            return total > outcome.line
        return total < outcome.line

    if isinstance(outcome, BothTeamsScore):
        both_scored = home_score > 0 and away_score > 0
        return both_scored if outcome.yes else not both_scored

    if isinstance(outcome, MatchResult):
        if outcome.pick == "1":
            return home_score > away_score
        if outcome.pick == "X":
            return home_score == away_score
        return home_score < away_score

    if isinstance(outcome, DoubleChance):
        if outcome.pick == "1X":
            return home_score >= away_score
        if outcome.pick == "X2":
            return home_score <= away_score
        return home_score != away_score

    if isinstance(outcome, Handicap):
        if outcome.team == "home":
            return home_score + outcome.line > away_score
        return away_score + outcome.line > home_score

    if isinstance(outcome, ExactScore):
        return home_score == outcome.home and away_score == outcome.away

    return False


def grade_bet(label: object, home_score: int, away_score: int) -> bool:
    """Return True if the bet described by `label` won at the given final score.

    Total: unrecognized labels grade as lost and are flagged in the log.
    """
    outcome = parse_bet_label(label)
    if outcome is None:
        logger.warning(
            "UNKNOWN bet label %r at %d-%d, grading as lost",
            label, home_score, away_score,
        )
        return False

    won = evaluate_outcome(outcome, home_score, away_score)
    logger.debug(
        "Graded %r as %s at %d-%d: %s",
        label, outcome, home_score, away_score, "won" if won else "lost",
    )
    return won
