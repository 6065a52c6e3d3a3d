"""CLI entrypoints for team-rank-mcp.

  team-rank-import       — load a team export (JSON) into the local database
  team-rank-refresh      — recompute and save a team's ranking
  team-rank-leaderboard  — print a team's ranking (human-readable)
  team-rank-log          — record a workout session
  team-rank-mcp          — start the MCP server (stdio)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

DEFAULT_DB = os.path.expanduser("~/.team-rank/team_rank.db")


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db", default=os.environ.get("TEAM_RANK_DB", DEFAULT_DB),
        help=f"Path to SQLite database (default: {DEFAULT_DB})",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Debug logging to stderr",
    )


def _setup(args: argparse.Namespace):
    """Configure logging and open the database; returns a session."""
    level = "DEBUG" if args.verbose else os.environ.get("TEAM_RANK_LOG_LEVEL", "WARNING")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    os.environ["TEAM_RANK_DB"] = args.db
    db_dir = os.path.dirname(args.db)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    from .models import init_db

    return init_db(args.db)


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


# ── team-rank-import ─────────────────────────────────────────────────────────


def cmd_import(argv: list[str] | None = None):
    """Load a team export into the local database."""
    parser = argparse.ArgumentParser(
        prog="team-rank-import",
        description="Import a team export (team, members, workouts) from JSON.",
    )
    parser.add_argument("file", help="JSON file, or - for stdin")
    parser.add_argument(
        "--no-refresh", action="store_true",
        help="Do not recompute the ranking after importing",
    )
    _add_common(parser)
    args = parser.parse_args(argv)

    try:
        if args.file == "-":
            payload = json.load(sys.stdin)
        else:
            with open(args.file, encoding="utf-8") as fh:
                payload = json.load(fh)
    except (OSError, ValueError) as e:
        _fail(f"cannot read {args.file}: {e}")

    from .store import RankingUnavailableError, import_team, refresh_rankings

    session = _setup(args)
    try:
        result = import_team(session, payload)
    except ValueError as e:
        _fail(str(e))
    if result["status"] == "ok" and not args.no_refresh:
        try:
            ranking = refresh_rankings(session, result["team_id"])
            result["ranked"] = len(ranking["participant_ids"])
        except RankingUnavailableError as e:
            result.setdefault("warnings", []).append(str(e))
    print(json.dumps(result, indent=2))

    if result["status"] != "ok":
        sys.exit(1)
    if result.get("warnings"):
        print(f"\n{len(result['warnings'])} warning(s) — see details above.", file=sys.stderr)


# ── team-rank-refresh ────────────────────────────────────────────────────────


def cmd_refresh(argv: list[str] | None = None):
    """Recompute and persist a team's ranking."""
    parser = argparse.ArgumentParser(
        prog="team-rank-refresh",
        description="Recompute a team's ranking from all logged workouts.",
    )
    parser.add_argument("team_id", help="Team id")
    parser.add_argument(
        "--criterion",
        help="totalMinutes, totalWorkouts, thisWeekWorkouts or compositeScore "
             "(default: the team's setting)",
    )
    _add_common(parser)
    args = parser.parse_args(argv)

    from .store import NotFoundError, RankingUnavailableError, refresh_rankings

    session = _setup(args)
    try:
        ranking = refresh_rankings(session, args.team_id, criterion=args.criterion)
    except RankingUnavailableError as e:
        _fail(f"ranking unavailable, please retry. {e}")
    except (NotFoundError, ValueError) as e:
        _fail(str(e))
    _print_leaderboard(ranking)


# ── team-rank-leaderboard ────────────────────────────────────────────────────


def cmd_leaderboard(argv: list[str] | None = None):
    """Print the stored ranking for a team."""
    parser = argparse.ArgumentParser(
        prog="team-rank-leaderboard",
        description="Print a team's current ranking.",
    )
    parser.add_argument("team_id", help="Team id")
    parser.add_argument("--json", action="store_true", help="Print raw JSON")
    _add_common(parser)
    args = parser.parse_args(argv)

    session = _setup(args)
    session.close()

    from .server import leaderboard

    ranking = leaderboard.fn(team_id=args.team_id)
    if "error" in ranking:
        _fail(ranking["error"])
    if args.json:
        print(json.dumps(ranking, indent=2))
        return
    _print_leaderboard(ranking)


def _print_leaderboard(ranking: dict):
    """Shared table printer used by cmd_refresh and cmd_leaderboard."""
    rows = ranking.get("rankings", [])
    print(f"=== Team {ranking['team_id']} ({ranking['mode']}, by {ranking['criterion']}) ===")
    print(f"Updated: {ranking.get('updated_at', '?')}\n")
    if not rows:
        print("(no ranked participants)")
        return

    width = max(len(str(r.get("name") or r["participant_id"])) for r in rows)
    print(f"{'#':>3}  {'Name'.ljust(width)}  {'Score':>9}  {'Workouts':>8}  {'Minutes':>8}  {'Streak':>6}")
    print("-" * (width + 45))
    for i, r in enumerate(rows, 1):
        name = str(r.get("name") or r["participant_id"])
        print(
            f"{i:>3}  {name.ljust(width)}  {r['total_score']:>9.2f}  "
            f"{r['workout_count']:>8}  {r['total_minutes']:>8g}  {r['streak_days']:>6}"
        )


# ── team-rank-log ────────────────────────────────────────────────────────────


def cmd_log(argv: list[str] | None = None):
    """Record a workout session for a participant."""
    parser = argparse.ArgumentParser(
        prog="team-rank-log",
        description="Record a workout session and refresh the team ranking.",
    )
    parser.add_argument("team_id", help="Team id")
    parser.add_argument("participant_id", help="Participant id")
    parser.add_argument("minutes", type=float, help="Duration in minutes")
    parser.add_argument("--type", dest="activity_type", default="", help="Activity type, e.g. cardio")
    parser.add_argument("--intensity", type=int, help="Intensity 1-10")
    parser.add_argument("--ai", action="store_true", help="Session was an AI-generated workout")
    parser.add_argument("--at", dest="occurred_at", help="ISO timestamp (default: now)")
    parser.add_argument(
        "--no-refresh", action="store_true",
        help="Do not recompute the ranking",
    )
    _add_common(parser)
    args = parser.parse_args(argv)

    if args.intensity is not None and not 1 <= args.intensity <= 10:
        _fail("--intensity must be between 1 and 10")

    from .store import NotFoundError, RankingUnavailableError, record_activity

    session = _setup(args)
    try:
        result = record_activity(
            session, args.team_id, args.participant_id, args.minutes,
            activity_type=args.activity_type,
            intensity=args.intensity,
            is_generated_by_ai=args.ai,
            occurred_at=args.occurred_at,
            auto_update=not args.no_refresh,
        )
    except (NotFoundError, RankingUnavailableError, ValueError) as e:
        _fail(str(e))

    print(f"Logged {args.minutes:g} min ({result['log_id']}), score {result['score']:.2f}")
    for warning in result.get("warnings", []):
        print(f"Warning: {warning}", file=sys.stderr)
    if "ranking" in result:
        _print_leaderboard(result["ranking"])


# ── team-rank-mcp ────────────────────────────────────────────────────────────


def cmd_server(argv: list[str] | None = None):
    """Start the Team Rank MCP server (stdio transport)."""
    parser = argparse.ArgumentParser(
        prog="team-rank-mcp",
        description="Start the Team Rank MCP server (stdio).",
    )
    _add_common(parser)
    args = parser.parse_args(argv)

    _setup(args).close()

    from .server import mcp

    print(f"Starting Team Rank MCP server (db: {args.db})", file=sys.stderr)
    mcp.run()
