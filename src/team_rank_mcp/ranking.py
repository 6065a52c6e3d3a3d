"""Ranking generator — order a team roster by participant score."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable

from .dates import field, resolve_now
from .scoring import ParticipantScore, compute_participant_score

logger = logging.getLogger(__name__)

ELIGIBLE_ROLES = ("player", "member", "group_member")

MODE_AUTOMATIC = "automatic"
MODE_MANUAL = "manual"
MODES = (MODE_AUTOMATIC, MODE_MANUAL)

# Ranking criterion -> ParticipantScore attribute it orders by
CRITERIA: dict[str, str] = {
    "totalMinutes": "total_minutes",
    "totalWorkouts": "workout_count",
    "thisWeekWorkouts": "this_week_workouts",
    "compositeScore": "total_score",
}
DEFAULT_CRITERION = "compositeScore"


def eligible_participants(members: Iterable[Any]) -> list[Any]:
    """Keep only members whose role takes part in rankings."""
    return [m for m in members if field(m, "role") in ELIGIBLE_ROLES]


def generate_rankings(
    participants: Iterable[Any],
    all_logs: Iterable[Any],
    now: datetime | None = None,
) -> list[ParticipantScore]:
    """Score every participant and sort by total score, highest first.

    Every participant appears exactly once; those without logs score 0.
    Ties keep roster order.
    """
    now = resolve_now(now)
    participants = list(participants)
    if not participants:
        return []

    by_participant: dict[Any, list[Any]] = defaultdict(list)
    for log in all_logs:
        by_participant[field(log, "participant_id")].append(log)

    scores = [
        compute_participant_score(p, by_participant.get(field(p, "id"), []), now=now)
        for p in participants
    ]
    ranked = sorted(scores, key=lambda s: s.total_score, reverse=True)
    logger.info(
        "Ranked %d participants (%d logs)",
        len(ranked), sum(s.workout_count for s in ranked),
    )
    return ranked


def sort_by_criterion(scores: Iterable[ParticipantScore], criterion: str) -> list[ParticipantScore]:
    """Stable sort, descending, by one of ``CRITERIA``."""
    try:
        attr = CRITERIA[criterion]
    except KeyError:
        raise ValueError(
            f"Unknown ranking criterion {criterion!r}; expected one of {', '.join(CRITERIA)}"
        ) from None
    return sorted(scores, key=lambda s: getattr(s, attr) or 0, reverse=True)


def apply_manual_order(scores: Iterable[ParticipantScore], manual_ids: Iterable[Any]) -> list[ParticipantScore]:
    """Order by a coach-supplied id list; unlisted participants keep their order after."""
    position = {}
    for pid in manual_ids:
        position.setdefault(pid, len(position))
    listed_last = len(position)
    return sorted(scores, key=lambda s: position.get(s.participant_id, listed_last))


def rank_of(scores: Iterable[ParticipantScore], participant_id: Any) -> int | None:
    """1-based position of *participant_id*, or None if absent."""
    for index, score in enumerate(scores):
        if score.participant_id == participant_id:
            return index + 1
    return None
