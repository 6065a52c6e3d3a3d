"""Store — fetch rosters and logs from SQLite, run the ranking, persist it.

This is the only layer that touches the database.  The scoring and ranking
modules stay pure; everything here is fetch -> compute -> persist.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import uuid
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import scoring
from .dates import coerce_datetime, resolve_now
from .models import ActivityLog, Participant, Ranking, Team
from .ranking import (
    CRITERIA, DEFAULT_CRITERION, MODE_AUTOMATIC, MODE_MANUAL, MODES,
    apply_manual_order, eligible_participants, generate_rankings, rank_of,
    sort_by_criterion,
)

logger = logging.getLogger(__name__)

# Criterion names written by older clients
LEGACY_CRITERIA = {"ruleBasedScore": "compositeScore"}


class RankingUnavailableError(RuntimeError):
    """Ranking could not be read or written; the caller should retry."""


class NotFoundError(LookupError):
    pass


# ═════════════════════════════════════════════════════════════════════════════
#  Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _g(data: Any, *keys: str, default: Any = None) -> Any:
    """Return the first present, non-None key of a dict."""
    if not isinstance(data, dict):
        return default
    for k in keys:
        if data.get(k) is not None:
            return data[k]
    return default


def _upsert(session: Session, model: type, pk_filter: dict, values: dict) -> None:
    """Insert or update a row."""
    obj = session.get(model, pk_filter) if len(pk_filter) == 1 else session.query(model).filter_by(**pk_filter).first()
    if obj:
        for k, v in values.items():
            setattr(obj, k, v)
    else:
        session.add(model(**pk_filter, **values))


def _int(value: Any) -> int | None:
    number = _float(value)
    return int(number) if number is not None else None


def _float(value: Any) -> float | None:
    """Finite float or None; inf and NaN never reach the database."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _iso(value: Any) -> str | None:
    resolved = coerce_datetime(value)
    return resolved.isoformat() if resolved else None


def _commit(session: Session, what: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise RankingUnavailableError(f"Could not save {what}; retry later ({e})") from e


def _normalize_criterion(criterion: str | None) -> str | None:
    if criterion is None:
        return None
    criterion = LEGACY_CRITERIA.get(criterion, criterion)
    if criterion not in CRITERIA:
        raise ValueError(
            f"Unknown ranking criterion {criterion!r}; expected one of {', '.join(CRITERIA)}"
        )
    return criterion


def _get_team(session: Session, team_id: str) -> Team:
    team = session.get(Team, team_id)
    if team is None:
        raise NotFoundError(f"Team {team_id!r} not found")
    return team


def _manual_ids(team: Team) -> list[str]:
    try:
        ids = json.loads(team.manual_rankings or "[]")
    except ValueError:
        logger.warning("Team %s has malformed manual rankings; ignoring them", team.id)
        return []
    return ids if isinstance(ids, list) else []


def _ranking_dict(row: Ranking) -> dict[str, Any]:
    return {
        "team_id": row.team_id,
        "mode": row.mode,
        "criterion": row.criterion,
        "participant_ids": json.loads(row.participant_ids or "[]"),
        "rankings": json.loads(row.ranking_data or "[]"),
        "updated_at": row.updated_at,
    }


def _order(team: Team, scores: list, criterion: str) -> tuple[list, str]:
    mode = team.ranking_mode or MODE_AUTOMATIC
    if mode == MODE_MANUAL:
        return apply_manual_order(scores, _manual_ids(team)), mode
    return sort_by_criterion(scores, criterion), mode


# ── Providers ────────────────────────────────────────────────────────────────


def fetch_roster(session: Session, team_id: str) -> list[Participant]:
    """All team members, in roster order."""
    return (
        session.query(Participant)
        .filter_by(team_id=team_id)
        .order_by(Participant.position, Participant.id)
        .all()
    )


def fetch_logs(session: Session, team_id: str) -> list[ActivityLog]:
    """Every activity log of the team, all participants."""
    return (
        session.query(ActivityLog)
        .filter_by(team_id=team_id)
        .order_by(ActivityLog.occurred_at, ActivityLog.created_at)
        .all()
    )


# ── Sink ─────────────────────────────────────────────────────────────────────


def persist_ranking(
    session: Session,
    team_id: str,
    scores: Iterable[scoring.ParticipantScore],
    criterion: str = DEFAULT_CRITERION,
    mode: str = MODE_AUTOMATIC,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Replace the team's stored ranking with *scores* (already ordered)."""
    criterion = _normalize_criterion(criterion)
    if mode not in MODES:
        raise ValueError(f"Unknown ranking mode {mode!r}; expected one of {', '.join(MODES)}")
    scores = list(scores)
    values = dict(
        mode=mode,
        criterion=criterion,
        participant_ids=json.dumps([s.participant_id for s in scores]),
        ranking_data=json.dumps([s.to_dict() for s in scores], default=str),
        updated_at=resolve_now(now).isoformat(),
    )
    try:
        _upsert(session, Ranking, {"team_id": team_id}, values)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise RankingUnavailableError(f"Could not save ranking for team {team_id}; retry later ({e})") from e
    return _ranking_dict(session.get(Ranking, team_id))


def load_ranking(session: Session, team_id: str) -> dict[str, Any] | None:
    """The last persisted ranking, or None if the team was never ranked."""
    try:
        row = session.get(Ranking, team_id)
    except SQLAlchemyError as e:
        raise RankingUnavailableError(f"Could not load ranking for team {team_id}; retry later ({e})") from e
    return _ranking_dict(row) if row else None


# ── Orchestration ────────────────────────────────────────────────────────────


def refresh_rankings(
    session: Session,
    team_id: str,
    criterion: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Full recomputation: fetch roster + logs, rank, persist, return it.

    Uses the team's stored mode and criterion unless *criterion* is given.
    """
    now = resolve_now(now)
    criterion = _normalize_criterion(criterion)
    try:
        team = _get_team(session, team_id)
        criterion = criterion or _normalize_criterion(team.ranking_criterion or DEFAULT_CRITERION)
        roster = eligible_participants(fetch_roster(session, team_id))
        logs = fetch_logs(session, team_id)
    except SQLAlchemyError as e:
        session.rollback()
        raise RankingUnavailableError(f"Could not load team {team_id}; retry later ({e})") from e

    if not roster:
        logger.info("Team %s has no ranking-eligible participants", team_id)
    scores, mode = _order(team, generate_rankings(roster, logs, now=now), criterion)
    return persist_ranking(session, team_id, scores, criterion=criterion, mode=mode, now=now)


def participant_breakdown(
    session: Session,
    team_id: str,
    participant_id: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Score breakdown for one participant plus their current rank."""
    now = resolve_now(now)
    team = _get_team(session, team_id)
    roster = eligible_participants(fetch_roster(session, team_id))
    participant = next((p for p in roster if p.id == participant_id), None)
    if participant is None:
        raise NotFoundError(f"Participant {participant_id!r} is not ranked in team {team_id!r}")

    logs = fetch_logs(session, team_id)
    own_logs = [log for log in logs if log.participant_id == participant_id]
    out = scoring.participant_breakdown(participant, own_logs, now=now)

    criterion = _normalize_criterion(team.ranking_criterion or DEFAULT_CRITERION)
    ordered, _ = _order(team, generate_rankings(roster, logs, now=now), criterion)
    out["rank"] = rank_of(ordered, participant_id)
    out["total_participants"] = len(ordered)
    return out


# ── Writes ───────────────────────────────────────────────────────────────────


def record_activity(
    session: Session,
    team_id: str,
    participant_id: str,
    duration_minutes: float,
    activity_type: str = "",
    intensity: int | None = None,
    is_generated_by_ai: bool = False,
    occurred_at: Any = None,
    log_id: str | None = None,
    auto_update: bool = True,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Append one activity log, then refresh the team ranking (best effort)."""
    now = resolve_now(now)
    _get_team(session, team_id)
    member = session.get(Participant, participant_id)
    if member is None or member.team_id != team_id:
        raise NotFoundError(f"Participant {participant_id!r} is not in team {team_id!r}")

    if occurred_at is None:
        occurred = now.isoformat()
    else:
        occurred = _iso(occurred_at)
        if occurred is None:
            raise ValueError(f"Cannot read activity date {occurred_at!r}")

    log = ActivityLog(
        id=log_id or uuid.uuid4().hex,
        team_id=team_id,
        participant_id=participant_id,
        duration_minutes=_float(duration_minutes),
        activity_type=activity_type,
        intensity=_int(intensity),
        is_generated_by_ai=bool(is_generated_by_ai),
        occurred_at=occurred,
        created_at=now.isoformat(),
    )
    session.add(log)
    _commit(session, f"activity for {participant_id}")

    out: dict[str, Any] = {
        "status": "ok",
        "log_id": log.id,
        "score": scoring.compute_log_score(log, now=now),
    }
    if auto_update:
        try:
            out["ranking"] = refresh_rankings(session, team_id, now=now)
        except RankingUnavailableError as e:
            logger.warning("Auto-update of rankings failed for team %s: %s", team_id, e)
            out["warnings"] = [str(e)]
    return out


def set_ranking_settings(
    session: Session,
    team_id: str,
    mode: str | None = None,
    criterion: str | None = None,
) -> dict[str, Any]:
    """Change how the team is ranked.  Does not recompute."""
    if mode is not None and mode not in MODES:
        raise ValueError(f"Unknown ranking mode {mode!r}; expected one of {', '.join(MODES)}")
    criterion = _normalize_criterion(criterion)

    team = _get_team(session, team_id)
    if mode is not None:
        team.ranking_mode = mode
    if criterion is not None:
        team.ranking_criterion = criterion
    _commit(session, f"ranking settings for team {team_id}")
    return {
        "team_id": team.id,
        "mode": team.ranking_mode,
        "criterion": team.ranking_criterion,
        "manual_rankings": _manual_ids(team),
    }


def set_manual_rankings(session: Session, team_id: str, participant_ids: list[str]) -> dict[str, Any]:
    """Store a coach-defined order and switch the team to manual mode.

    Ids not on the team roster are dropped.
    """
    team = _get_team(session, team_id)
    known = {p.id for p in fetch_roster(session, team_id)}
    kept = [pid for pid in participant_ids if pid in known]
    dropped = [pid for pid in participant_ids if pid not in known]
    if dropped:
        logger.warning("Ignoring unknown participants in manual ranking for %s: %s", team_id, dropped)

    team.manual_rankings = json.dumps(kept)
    team.ranking_mode = MODE_MANUAL
    _commit(session, f"manual ranking for team {team_id}")
    out = {
        "team_id": team.id,
        "mode": team.ranking_mode,
        "criterion": team.ranking_criterion,
        "manual_rankings": kept,
    }
    if dropped:
        out["warnings"] = [f"unknown participant: {pid}" for pid in dropped]
    return out


# ── Import ───────────────────────────────────────────────────────────────────


def _workout_id(w: dict) -> str:
    digest = hashlib.sha1(json.dumps(w, sort_keys=True, default=str).encode()).hexdigest()
    return f"imported-{digest[:16]}"


def import_team(session: Session, payload: dict[str, Any]) -> dict[str, Any]:
    """Upsert a team export (team document, members, workouts).

    Keys follow the document store (camelCase).  Idempotent: re-importing
    the same export updates rows in place.  Participant and workout ids are
    global, so an id already stored under another team moves to this one;
    each move is reported in the summary warnings.
    """
    team_id = _g(payload, "id", "teamId")
    if not team_id:
        raise ValueError("Team export has no 'id'")
    team_id = str(team_id)

    counts = {"members": 0, "workouts": 0}
    warnings: list[str] = []
    try:
        legacy = _g(payload, "automaticRankingBy", "rankingCriterion")
        criterion = LEGACY_CRITERIA.get(legacy, legacy)
        if criterion not in CRITERIA:
            if criterion is not None:
                warnings.append(f"team: unknown ranking criterion {legacy!r}, using {DEFAULT_CRITERION}")
            criterion = DEFAULT_CRITERION
        mode = _g(payload, "rankingMode", default=MODE_AUTOMATIC)
        if mode not in MODES:
            warnings.append(f"team: unknown ranking mode {mode!r}, using {MODE_AUTOMATIC}")
            mode = MODE_AUTOMATIC
        manual = payload.get("manualRankings")
        _upsert(session, Team, {"id": team_id}, dict(
            name=payload.get("name", ""),
            ranking_mode=mode,
            ranking_criterion=criterion,
            manual_rankings=json.dumps(manual if isinstance(manual, list) else []),
        ))

        for i, m in enumerate(payload.get("members") or []):
            pid = _g(m, "id", "uid", "userId")
            if not pid:
                warnings.append(f"members[{i}]: missing id")
                continue
            pid = str(pid)
            existing = session.get(Participant, pid)
            if existing is not None and existing.team_id != team_id:
                warnings.append(f"members[{i}] ({pid}): moved from team {existing.team_id}")
                logger.warning("Participant %s moved from team %s to %s", pid, existing.team_id, team_id)
            _upsert(session, Participant, {"id": pid}, dict(
                team_id=team_id,
                name=m.get("name", ""),
                role=m.get("role"),
                position=i,
            ))
            counts["members"] += 1

        for i, w in enumerate(payload.get("workouts") or []):
            if not isinstance(w, dict):
                warnings.append(f"workouts[{i}]: not an object")
                continue
            wid = str(_g(w, "id", default="") or _workout_id(w))
            occurred = _iso(_g(w, "timestamp")) or _iso(_g(w, "date"))
            created = _iso(_g(w, "createdAt"))
            if occurred is None and created is None:
                warnings.append(f"workouts[{i}] ({wid}): no resolvable date")
            existing = session.get(ActivityLog, wid)
            if existing is not None and existing.team_id != team_id:
                warnings.append(f"workouts[{i}] ({wid}): moved from team {existing.team_id}")
            _upsert(session, ActivityLog, {"id": wid}, dict(
                team_id=team_id,
                participant_id=str(_g(w, "userId", "participantId", default="")),
                duration_minutes=_float(_g(w, "duration", "durationMinutes")),
                activity_type=_g(w, "type", "activityType", default=""),
                intensity=_int(w.get("intensity")),
                is_generated_by_ai=bool(_g(w, "isAIGenerated", "isGeneratedByAI", default=False)),
                occurred_at=occurred,
                created_at=created,
                raw_json=json.dumps(w, default=str),
            ))
            counts["workouts"] += 1
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        return {"status": "error", "team_id": team_id, "error": str(e)}

    out: dict[str, Any] = {"status": "ok", "team_id": team_id, "imported": counts}
    if warnings:
        out["warnings"] = warnings
    return out
