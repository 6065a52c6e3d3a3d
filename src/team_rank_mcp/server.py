"""FastMCP server — exposes team ranking tools over MCP (stdio)."""

from __future__ import annotations

import os
from typing import Any

from fastmcp import FastMCP
from sqlalchemy.orm import Session

from . import models, scoring, store

# ── Server setup ─────────────────────────────────────────────────────────────

mcp = FastMCP(
    "Team Rank",
    instructions=(
        "Team fitness leaderboard backed by a local database of rosters and "
        "logged workouts.  Use leaderboard to read the current ranking, "
        "score_breakdown to explain one participant's score, and log_activity "
        "to record a session (rankings refresh automatically)."
    ),
)


def _db_path() -> str:
    return os.environ.get("TEAM_RANK_DB", os.path.expanduser("~/.team-rank/team_rank.db"))


def _get_session() -> Session:
    return models.init_db(_db_path())


def _error(e: Exception) -> dict[str, Any]:
    if isinstance(e, store.RankingUnavailableError):
        return {"error": f"Ranking unavailable: {e}", "retry": True}
    return {"error": str(e)}


# ── MCP Tools ────────────────────────────────────────────────────────────────


@mcp.tool
def leaderboard(team_id: str) -> dict[str, Any]:
    """Current ranking for a team.

    Returns the stored ranking; computes and saves one first if the team has
    never been ranked.  Each entry carries its 1-based rank.
    """
    session = _get_session()
    try:
        ranking = store.load_ranking(session, team_id)
        if ranking is None:
            ranking = store.refresh_rankings(session, team_id)
        for i, entry in enumerate(ranking["rankings"]):
            entry["rank"] = i + 1
        return ranking
    except (store.RankingUnavailableError, store.NotFoundError, ValueError) as e:
        return _error(e)
    finally:
        session.close()


@mcp.tool
def refresh_rankings(team_id: str, criterion: str | None = None) -> dict[str, Any]:
    """Recompute and save the team ranking from all logged activity.

    *criterion* is one of totalMinutes, totalWorkouts, thisWeekWorkouts,
    compositeScore (default: the team's setting).
    """
    session = _get_session()
    try:
        return store.refresh_rankings(session, team_id, criterion=criterion)
    except (store.RankingUnavailableError, store.NotFoundError, ValueError) as e:
        return _error(e)
    finally:
        session.close()


@mcp.tool
def score_breakdown(team_id: str, participant_id: str) -> dict[str, Any]:
    """Explain one participant's score: base, streak and weekly bonuses, rank."""
    session = _get_session()
    try:
        return store.participant_breakdown(session, team_id, participant_id)
    except (store.NotFoundError, ValueError) as e:
        return _error(e)
    finally:
        session.close()


@mcp.tool
def log_activity(
    team_id: str,
    participant_id: str,
    duration_minutes: float,
    activity_type: str = "",
    intensity: int | None = None,
    is_generated_by_ai: bool = False,
    occurred_at: str | None = None,
) -> dict[str, Any]:
    """Record a workout session and refresh the team ranking.

    *occurred_at* is an ISO timestamp; defaults to now.  An unreadable
    timestamp is rejected and nothing is recorded.
    """
    session = _get_session()
    try:
        return store.record_activity(
            session, team_id, participant_id, duration_minutes,
            activity_type=activity_type,
            intensity=intensity,
            is_generated_by_ai=is_generated_by_ai,
            occurred_at=occurred_at,
        )
    except (store.RankingUnavailableError, store.NotFoundError, ValueError) as e:
        return _error(e)
    finally:
        session.close()


@mcp.tool
def set_ranking_mode(team_id: str, mode: str, criterion: str | None = None) -> dict[str, Any]:
    """Switch between automatic and manual ranking, optionally changing the criterion."""
    session = _get_session()
    try:
        settings = store.set_ranking_settings(session, team_id, mode=mode, criterion=criterion)
        settings["ranking"] = store.refresh_rankings(session, team_id)
        return settings
    except (store.RankingUnavailableError, store.NotFoundError, ValueError) as e:
        return _error(e)
    finally:
        session.close()


@mcp.tool
def set_manual_rankings(team_id: str, participant_ids: list[str]) -> dict[str, Any]:
    """Save a coach-defined order (best first) and switch the team to manual mode."""
    session = _get_session()
    try:
        settings = store.set_manual_rankings(session, team_id, participant_ids)
        settings["ranking"] = store.refresh_rankings(session, team_id)
        return settings
    except (store.RankingUnavailableError, store.NotFoundError) as e:
        return _error(e)
    finally:
        session.close()


@mcp.tool
def ranking_explanation() -> str:
    """How the composite score is calculated."""
    return scoring.ranking_explanation()
