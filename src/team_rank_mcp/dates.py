"""Date helpers — resolve heterogeneous activity timestamps to local datetimes.

Activity logs arrive from several writers, so the date can sit in different
fields and take different shapes.  ``resolve_log_date`` is the single place
that knows the accepted fields (``DATE_FIELDS``, in order) and shapes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from typing import Any

logger = logging.getLogger(__name__)

# Checked in order; the first field that resolves wins.
DATE_FIELDS = ("occurred_at", "timestamp", "date", "created_at")

# Wrapped timestamp objects (document-store clients) expose one of these.
_UNWRAP_METHODS = ("to_datetime", "toDate", "ToDatetime")


def field(record: Any, name: str, default: Any = None) -> Any:
    """Read *name* from a mapping or an attribute object."""
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def to_local_naive(value: datetime) -> datetime:
    """Drop tzinfo after converting aware datetimes to local time."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def coerce_datetime(value: Any) -> datetime | None:
    """Turn one raw date value into a naive local datetime, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return to_local_naive(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as written by JavaScript clients
        try:
            return datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_local_naive(datetime.fromisoformat(text))
        except ValueError:
            return None
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        try:
            return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
    for method in _UNWRAP_METHODS:
        unwrap = getattr(value, method, None)
        if callable(unwrap):
            return coerce_datetime(unwrap())
    return None


def resolve_log_date(log: Any) -> datetime | None:
    """Return the log's date as a naive local datetime.

    Walks ``DATE_FIELDS`` in order.  Returns None (and logs a warning) when
    no field resolves, so callers can exclude the log.
    """
    for name in DATE_FIELDS:
        raw = field(log, name)
        if raw is None:
            continue
        resolved = coerce_datetime(raw)
        if resolved is not None:
            return resolved
    logger.warning(
        "Activity log %s has no resolvable date; excluding it",
        field(log, "id", "<unknown>"),
    )
    return None


def days_ago(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)


def resolve_now(now: datetime | None) -> datetime:
    """The anchor time for a computation; wall clock when not injected."""
    return to_local_naive(now) if now is not None else datetime.now()
