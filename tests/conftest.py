"""Shared fixtures: a fixed clock, a log factory and an in-memory database."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from team_rank_mcp.models import init_db

NOW = datetime(2026, 10, 19, 15, 30)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_log():
    """Build an activity-log dict; ``days_ago`` is relative to NOW."""

    def _make(
        participant_id="p1",
        duration_minutes=30,
        activity_type="",
        intensity=None,
        is_generated_by_ai=False,
        days_ago=10,
        **extra,
    ):
        log = {
            "participant_id": participant_id,
            "duration_minutes": duration_minutes,
            "activity_type": activity_type,
            "intensity": intensity,
            "is_generated_by_ai": is_generated_by_ai,
            "occurred_at": NOW - timedelta(days=days_ago) if days_ago is not None else None,
        }
        log.update(extra)
        return log

    return _make


@pytest.fixture
def session():
    s = init_db(":memory:")
    yield s
    s.close()


def team_export(now: datetime = NOW) -> dict:
    """A team export as the document store writes it (camelCase keys)."""
    iso = lambda days: (now - timedelta(days=days)).isoformat()  # noqa: E731
    return {
        "id": "t1",
        "name": "Ice Hawks",
        "rankingMode": "automatic",
        "automaticRankingBy": "ruleBasedScore",
        "members": [
            {"id": "coach", "name": "Coach Kim", "role": "coach"},
            {"id": "alice", "name": "Alice", "role": "player"},
            {"id": "bob", "name": "Bob", "role": "player"},
            {"id": "cara", "name": "Cara", "role": "group_member"},
        ],
        "workouts": [
            {"id": "w1", "userId": "alice", "duration": 30, "type": "Cardio", "intensity": 7, "timestamp": iso(0)},
            {"id": "w2", "userId": "alice", "duration": 45, "type": "strength", "timestamp": iso(1)},
            {"id": "w3", "userId": "bob", "duration": 20, "type": "stretching", "date": iso(20)},
            {"id": "w4", "userId": "coach", "duration": 90, "type": "cardio", "timestamp": iso(0)},
            {"id": "w5", "userId": "bob", "duration": 15, "type": "skills", "createdAt": iso(30)},
        ],
    }


@pytest.fixture
def export():
    return team_export()


@pytest.fixture
def make_export():
    return team_export
