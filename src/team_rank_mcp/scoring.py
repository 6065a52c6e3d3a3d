"""Score calculator — per-log and per-participant composite scores.

Formula:
  * base score: duration (minutes) x activity-type multiplier
  * intensity bonus: +10% per point above 5
  * recent activity bonus: +20% for logs in the last 3 days
  * streak bonus: +5% of the base score per consecutive active day
  * weekly bonus: 10% of the last 7 days' score, capped at 30% of base

Everything here is pure: callers pass the logs and, for reproducible
results, the ``now`` they want the time windows anchored to.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field as dc_field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from .dates import days_ago, field, resolve_log_date, resolve_now

logger = logging.getLogger(__name__)

# Walked in order and every match overwrites the previous one (last match
# wins), so "cardio recovery" scores as recovery.  Order is significant.
TYPE_MULTIPLIERS: tuple[tuple[str, float], ...] = (
    ("cardio", 1.2),
    ("conditioning", 1.2),
    ("strength", 1.1),
    ("weight training", 1.1),
    ("weights", 1.1),
    ("skating", 1.15),
    ("speed", 1.15),
    ("agility", 1.15),
    ("skills", 1.05),
    ("stick handling", 1.05),
    ("shooting", 1.05),
    ("recovery", 0.9),
    ("flexibility", 0.9),
    ("stretching", 0.9),
    ("ai-generated", 1.1),
    ("ai generated", 1.1),
)
DEFAULT_MULTIPLIER = 1.0
AI_GENERATED_MULTIPLIER = 1.1

INTENSITY_MIDPOINT = 5
INTENSITY_STEP = 0.10
RECENT_DAYS = 3
RECENT_BONUS = 1.20
STREAK_STEP = 0.05
WEEKLY_DAYS = 7
WEEKLY_RATE = 0.10
WEEKLY_CAP = 0.30


@dataclass
class ScoreBreakdown:
    base_score: float = 0.0
    streak_bonus_amount: float = 0.0
    weekly_bonus_amount: float = 0.0


@dataclass
class ParticipantScore:
    participant_id: Any = None
    name: str | None = None
    role: str | None = None
    total_score: float = 0.0
    workout_count: int = 0
    this_week_workouts: int = 0
    average_score: float = 0.0
    total_minutes: float = 0
    streak_days: int = 0
    weekly_score: float = 0.0
    breakdown: ScoreBreakdown = dc_field(default_factory=ScoreBreakdown)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── helpers ──────────────────────────────────────────────────────────────────


def round2(value: float) -> float:
    """Round half-up on the cent digit."""
    if not math.isfinite(value) or abs(value) >= 1e15:
        # no cent digit left to round at this magnitude
        return value
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _duration(log: Any) -> float:
    minutes = _number(field(log, "duration_minutes"))
    if not minutes or minutes < 0:
        return 0.0
    return minutes


def type_multiplier(activity_type: str | None, is_generated_by_ai: bool = False) -> float:
    """Multiplier for an activity label; AI-generated sessions always get 1.1."""
    if is_generated_by_ai:
        return AI_GENERATED_MULTIPLIER
    label = (activity_type or "").lower()
    multiplier = DEFAULT_MULTIPLIER
    for needle, value in TYPE_MULTIPLIERS:
        if needle in label:
            multiplier = value
    return multiplier


def _score_log(log: Any, when: datetime | None, now: datetime) -> float:
    base = _duration(log)
    if not base:
        logger.debug("Activity log %s has no duration", field(log, "id", "<unknown>"))
        return 0.0
    if when is None:
        return 0.0

    multiplier = type_multiplier(
        field(log, "activity_type"), bool(field(log, "is_generated_by_ai", False))
    )
    score = base * multiplier

    intensity = _number(field(log, "intensity"))
    if intensity is not None and intensity > INTENSITY_MIDPOINT:
        score *= 1 + (intensity - INTENSITY_MIDPOINT) * INTENSITY_STEP

    if when > days_ago(now, RECENT_DAYS):
        score *= RECENT_BONUS

    if not math.isfinite(score):
        logger.warning("Activity log %s score overflowed; scoring it 0", field(log, "id", "<unknown>"))
        return 0.0
    return round2(score)


def _streak_from_days(days: set[date], now: datetime) -> int:
    if not days:
        return 0
    today = now.date()
    if max(days) < today - timedelta(days=1):
        return 0

    cursor = today
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


# ── public API ───────────────────────────────────────────────────────────────


def compute_log_score(log: Any, now: datetime | None = None) -> float:
    """Score one activity log.

    Returns 0 for logs without a positive duration or without a resolvable
    date.  Never negative.
    """
    now = resolve_now(now)
    if not _duration(log):
        return 0.0
    return _score_log(log, resolve_log_date(log), now)


def compute_streak_days(logs: Iterable[Any], now: datetime | None = None) -> int:
    """Consecutive active calendar days counted back from today.

    Zero when today has no activity, or when the most recent active day is
    before yesterday.  Logs without a resolvable date are ignored.
    """
    now = resolve_now(now)
    days = set()
    for log in logs:
        when = resolve_log_date(log)
        if when is not None:
            days.add(when.date())
    return _streak_from_days(days, now)


def compute_participant_score(
    participant: Any, logs: Iterable[Any], now: datetime | None = None
) -> ParticipantScore:
    """Composite score for one participant over their own logs.

    The caller is responsible for passing only this participant's logs.
    """
    now = resolve_now(now)
    logs = list(logs)
    result = ParticipantScore(
        participant_id=field(participant, "id"),
        name=field(participant, "name"),
        role=field(participant, "role"),
    )
    if not logs:
        return result

    resolved = [(log, resolve_log_date(log)) for log in logs]
    scores = [_score_log(log, when, now) for log, when in resolved]
    base_score = sum(scores)

    streak_days = _streak_from_days(
        {when.date() for _, when in resolved if when is not None}, now
    )
    streak_bonus = base_score * (streak_days * STREAK_STEP)

    week_cutoff = days_ago(now, WEEKLY_DAYS)
    weekly_scores = [
        score
        for (_, when), score in zip(resolved, scores)
        if when is not None and when > week_cutoff
    ]
    weekly_raw = sum(weekly_scores)
    weekly_bonus = min(weekly_raw * WEEKLY_RATE, base_score * WEEKLY_CAP)

    result.total_score = round2(base_score + streak_bonus + weekly_bonus)
    result.workout_count = len(logs)
    result.this_week_workouts = len(weekly_scores)
    result.average_score = round2(base_score / len(logs))
    result.total_minutes = sum(_duration(log) for log in logs)
    result.streak_days = streak_days
    result.weekly_score = round2(weekly_raw)
    result.breakdown = ScoreBreakdown(
        base_score=round2(base_score),
        streak_bonus_amount=round2(streak_bonus),
        weekly_bonus_amount=round2(weekly_bonus),
    )
    logger.debug(
        "Scored %s: total=%s base=%s streak=%s weekly=%s",
        result.participant_id, result.total_score, base_score, streak_days, weekly_raw,
    )
    return result


def ranking_explanation() -> str:
    return (
        "Rankings are calculated using a composite score:\n"
        "\n"
        "Base score:\n"
        "  - Duration x activity type multiplier\n"
        "  - Cardio/Conditioning: +20%\n"
        "  - Strength training: +10%\n"
        "  - Skating/Speed/Agility: +15%\n"
        "  - Skills/Stick handling/Shooting: +5%\n"
        "  - Recovery/Flexibility/Stretching: -10%\n"
        "  - AI-generated workouts: +10%\n"
        "\n"
        "Bonuses:\n"
        "  - Intensity: +10% per point above 5\n"
        "  - Recent activity: +20% for the last 3 days\n"
        "  - Streak: +5% per consecutive day\n"
        "  - Weekly activity: up to +30%\n"
        "\n"
        "Rankings update automatically after each logged workout."
    )


def participant_breakdown(
    participant: Any, logs: Iterable[Any], now: datetime | None = None, recent: int = 5
) -> dict[str, Any]:
    """Score dict plus the explanation and the last *recent* logs' scores."""
    now = resolve_now(now)
    logs = list(logs)
    out = compute_participant_score(participant, logs, now=now).to_dict()
    out["explanation"] = ranking_explanation()
    out["recent_workouts"] = []
    for log in logs[-recent:] if recent > 0 else []:
        when = resolve_log_date(log)
        out["recent_workouts"].append({
            "activity_type": field(log, "activity_type"),
            "duration_minutes": _duration(log),
            "score": _score_log(log, when, now),
            "date": when.isoformat() if when else None,
        })
    return out
