from __future__ import annotations

from datetime import timedelta

import pytest

from team_rank_mcp.scoring import (
    compute_log_score,
    compute_participant_score,
    compute_streak_days,
    participant_breakdown,
    ranking_explanation,
    round2,
    type_multiplier,
)

PLAYER = {"id": "p1", "name": "Alice", "role": "player"}


# ── compute_log_score ────────────────────────────────────────────────────────


def test_recent_cardio_with_intensity(make_log, now):
    log = make_log(duration_minutes=30, activity_type="cardio", intensity=7, days_ago=0)
    # 30 * 1.2 = 36, +20% intensity = 43.2, +20% recency = 51.84
    assert compute_log_score(log, now=now) == 51.84


@pytest.mark.parametrize(
    "duration", [0, None, "", -15, "abc", float("nan"), float("inf"), "inf", "-Infinity"]
)
def test_missing_or_invalid_duration_scores_zero(make_log, now, duration):
    assert compute_log_score(make_log(duration_minutes=duration, days_ago=0), now=now) == 0


def test_missing_duration_key_scores_zero(now):
    assert compute_log_score({"activity_type": "cardio", "occurred_at": now}, now=now) == 0


def test_non_finite_intensity_is_ignored(make_log, now):
    assert compute_log_score(make_log(intensity=float("inf")), now=now) == 30.0
    assert compute_log_score(make_log(intensity="nan"), now=now) == 30.0


def test_overflowing_score_is_zero(make_log, now):
    log = make_log(duration_minutes=1e308, activity_type="cardio", intensity=10, days_ago=0)
    assert compute_log_score(log, now=now) == 0


def test_non_finite_duration_keeps_participant_total_finite(make_log, now):
    logs = [make_log(duration_minutes=float("inf")), make_log(duration_minutes=30)]
    result = compute_participant_score(PLAYER, logs, now=now)
    assert result.total_minutes == 30
    assert result.total_score == 30.0


@pytest.mark.parametrize("intensity", [1, 2, 3, 4, 5])
def test_low_intensity_has_no_effect(make_log, now, intensity):
    with_intensity = compute_log_score(make_log(intensity=intensity), now=now)
    without = compute_log_score(make_log(intensity=None), now=now)
    assert with_intensity == without == 30.0


def test_intensity_bonus_is_linear_above_midpoint(make_log, now):
    assert compute_log_score(make_log(duration_minutes=100, intensity=6), now=now) == 110.0
    assert compute_log_score(make_log(duration_minutes=100, intensity=10), now=now) == 150.0


def test_score_is_monotonic_in_duration(make_log, now):
    previous = 0.0
    for minutes in range(0, 200, 7):
        score = compute_log_score(
            make_log(duration_minutes=minutes, activity_type="skating", intensity=8, days_ago=1),
            now=now,
        )
        assert score >= previous
        previous = score


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Cardio", 1.2),
        ("CONDITIONING drills", 1.2),
        ("weights", 1.1),
        ("Weight Training", 1.1),
        ("agility ladder", 1.15),
        ("stick handling", 1.05),
        ("yoga stretching", 0.9),
        ("AI Generated Workout", 1.1),
        ("swimming", 1.0),
        ("", 1.0),
        (None, 1.0),
    ],
)
def test_type_multiplier_table(label, expected):
    assert type_multiplier(label) == expected


def test_later_table_match_wins():
    # recovery comes after cardio in the table
    assert type_multiplier("cardio recovery") == 0.9
    # speed comes after strength, regardless of word order in the label
    assert type_multiplier("strength and speed") == 1.15
    assert type_multiplier("speed strength") == 1.15


def test_ai_generated_overrides_type(make_log, now):
    assert type_multiplier("recovery", is_generated_by_ai=True) == 1.1
    log = make_log(duration_minutes=100, activity_type="recovery", is_generated_by_ai=True)
    assert compute_log_score(log, now=now) == 110.0


def test_recency_boundary_is_exclusive(make_log, now):
    exactly = make_log(days_ago=None, occurred_at=now - timedelta(days=3))
    just_inside = make_log(days_ago=None, occurred_at=now - timedelta(days=3) + timedelta(seconds=1))
    assert compute_log_score(exactly, now=now) == 30.0
    assert compute_log_score(just_inside, now=now) == 36.0


def test_unresolvable_date_scores_zero(make_log, now):
    log = make_log(days_ago=None, timestamp="not-a-date")
    assert compute_log_score(log, now=now) == 0


def test_fallback_date_fields_are_used(make_log, now):
    log = make_log(days_ago=None, created_at=(now - timedelta(days=1)).isoformat())
    assert compute_log_score(log, now=now) == 36.0


def test_rounding_is_half_up():
    assert round2(0.125) == 0.13
    assert round2(2.675) == 2.68
    assert round2(51.84000000000001) == 51.84


def test_log_score_uses_wall_clock_by_default(make_log):
    from datetime import datetime

    log = make_log(days_ago=None, occurred_at=datetime.now())
    assert compute_log_score(log) == 36.0


# ── compute_streak_days ──────────────────────────────────────────────────────


def test_streak_empty(now):
    assert compute_streak_days([], now=now) == 0


def test_streak_counts_consecutive_days_from_today(make_log, now):
    logs = [make_log(days_ago=d) for d in (0, 1, 2, 3)]
    assert compute_streak_days(logs, now=now) == 4


def test_streak_is_zero_until_today_has_activity(make_log, now):
    logs = [make_log(days_ago=d) for d in (1, 2)]
    assert compute_streak_days(logs, now=now) == 0


def test_streak_resumes_once_today_is_logged(make_log, now):
    logs = [make_log(days_ago=d) for d in (0, 1, 2)]
    assert compute_streak_days(logs, now=now) == 3


def test_streak_broken_when_last_activity_before_yesterday(make_log, now):
    logs = [make_log(days_ago=d) for d in (2, 3, 4)]
    assert compute_streak_days(logs, now=now) == 0


def test_streak_stops_at_first_gap_and_ignores_duplicates(make_log, now):
    logs = [make_log(days_ago=d) for d in (0, 0, 1, 3, 4)]
    assert compute_streak_days(logs, now=now) == 2


def test_streak_uses_calendar_days_not_24h_windows(make_log, now):
    late_yesterday = now.replace(hour=23, minute=59) - timedelta(days=1)
    early_today = now.replace(hour=0, minute=1)
    logs = [make_log(days_ago=None, occurred_at=late_yesterday), make_log(days_ago=None, occurred_at=early_today)]
    assert compute_streak_days(logs, now=now) == 2


def test_streak_ignores_logs_without_dates(make_log, now):
    logs = [make_log(days_ago=0), make_log(days_ago=None)]
    assert compute_streak_days(logs, now=now) == 1


# ── compute_participant_score ────────────────────────────────────────────────


def test_participant_without_logs_scores_zero(now):
    result = compute_participant_score(PLAYER, [], now=now)
    assert result.total_score == 0
    assert result.workout_count == 0
    assert result.streak_days == 0
    assert result.breakdown.base_score == 0
    assert result.participant_id == "p1"
    assert result.name == "Alice"


def test_four_day_streak_bonus(make_log, now):
    logs = [make_log(duration_minutes=40, days_ago=d) for d in (0, 1, 2, 3)]
    result = compute_participant_score(PLAYER, logs, now=now)
    base = result.breakdown.base_score
    assert result.streak_days == 4
    assert result.breakdown.streak_bonus_amount == pytest.approx(base * 0.20, abs=0.01)


def test_no_streak_bonus_without_activity_today(make_log, now):
    logs = [make_log(duration_minutes=40, days_ago=d) for d in (1, 2)]
    result = compute_participant_score(PLAYER, logs, now=now)
    assert result.streak_days == 0
    assert result.breakdown.streak_bonus_amount == 0


def test_participant_totals(make_log, now):
    logs = [
        make_log(duration_minutes=30, activity_type="cardio", intensity=7, days_ago=0),  # 51.84
        make_log(duration_minutes=50, days_ago=10),                                      # 50.0
    ]
    result = compute_participant_score(PLAYER, logs, now=now)
    assert result.workout_count == 2
    assert result.this_week_workouts == 1
    assert result.total_minutes == 80
    assert result.streak_days == 1
    assert result.breakdown.base_score == 101.84
    assert result.weekly_score == 51.84
    assert result.average_score == 50.92
    # base + 5% streak + 10% of the weekly score
    assert result.breakdown.streak_bonus_amount == 5.09
    assert result.breakdown.weekly_bonus_amount == 5.18
    assert result.total_score == round2(101.84 + 101.84 * 0.05 + 51.84 * 0.10)


def test_weekly_bonus_stays_under_cap(make_log, now):
    logs = [make_log(duration_minutes=m, days_ago=d) for m, d in ((60, 0), (90, 2), (20, 6), (45, 30))]
    result = compute_participant_score(PLAYER, logs, now=now)
    assert result.breakdown.weekly_bonus_amount <= round2(result.breakdown.base_score * 0.30)
    assert result.breakdown.weekly_bonus_amount == round2(result.weekly_score * 0.10)


def test_weekly_window_boundary_is_exclusive(make_log, now):
    logs = [
        make_log(days_ago=None, occurred_at=now - timedelta(days=7)),
        make_log(days_ago=None, occurred_at=now - timedelta(days=7) + timedelta(minutes=1)),
    ]
    result = compute_participant_score(PLAYER, logs, now=now)
    assert result.this_week_workouts == 1
    assert result.weekly_score == 30.0


def test_undated_logs_count_but_do_not_score(make_log, now):
    logs = [make_log(duration_minutes=30, days_ago=10), make_log(duration_minutes=60, days_ago=None)]
    result = compute_participant_score(PLAYER, logs, now=now)
    assert result.workout_count == 2
    assert result.total_minutes == 90
    assert result.breakdown.base_score == 30.0
    assert result.total_score >= 0


def test_participant_score_to_dict(make_log, now):
    data = compute_participant_score(PLAYER, [make_log(days_ago=0)], now=now).to_dict()
    assert data["participant_id"] == "p1"
    assert set(data["breakdown"]) == {"base_score", "streak_bonus_amount", "weekly_bonus_amount"}


# ── breakdown / explanation ──────────────────────────────────────────────────


def test_participant_breakdown_lists_recent_workouts(make_log, now):
    logs = [make_log(duration_minutes=10 * i, activity_type="cardio", days_ago=i) for i in range(1, 8)]
    out = participant_breakdown(PLAYER, logs, now=now, recent=3)
    assert out["explanation"] == ranking_explanation()
    assert [w["duration_minutes"] for w in out["recent_workouts"]] == [50.0, 60.0, 70.0]
    assert out["recent_workouts"][0]["score"] == compute_log_score(logs[4], now=now)
    assert out["total_score"] == compute_participant_score(PLAYER, logs, now=now).total_score


def test_explanation_mentions_bonuses():
    text = ranking_explanation()
    assert "Streak" in text
    assert "30%" in text
