#!/usr/bin/env python3
"""
Temporal Window Resolver
========================
Filters dated records to those observable at an evaluation date.

Everything downstream that computes a metric "as of" some date routes its
history through ``resolve_as_of`` first, so a record dated after the
evaluation date can never leak into the result.  Appending future rows to
the input never changes the output for an earlier cutoff.

Records may be pydantic models or plain dicts; the date is read from a
``date`` or ``period_end_date`` attribute/key and may be a ``date``, a
``datetime``, or an ISO-8601 string.  Records with no parseable date are
dropped rather than raising.
"""

import logging
from datetime import date, datetime
from typing import Iterable, Optional

log = logging.getLogger("pitscore.temporal_resolver")

_DATE_KEYS = ("date", "period_end_date")


def to_date(value) -> Optional[date]:
    """Coerce a date-like value to ``datetime.date``; None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(s[:10])
        except ValueError:
            return None
    return None


def record_date(record) -> Optional[date]:
    if isinstance(record, dict):
        for key in _DATE_KEYS:
            if key in record:
                return to_date(record[key])
        return None
    for key in _DATE_KEYS:
        v = getattr(record, key, None)
        if v is not None:
            return to_date(v)
    return None


def sort_by_date(records: Iterable) -> list:
    """Stable ascending sort by record date; undated records are dropped.

    Idempotent: sorting an already sorted list returns it unchanged, and
    records sharing a date keep their input order.
    """
    dated = []
    for r in records or []:
        d = record_date(r)
        if d is None:
            log.debug("Dropping record with no parseable date: %r", r)
            continue
        dated.append((d, r))
    dated.sort(key=lambda pair: pair[0])
    return [r for _, r in dated]


def resolve_as_of(records: Iterable, cutoff) -> list:
    """Return the records dated on or before ``cutoff``, ascending by date.

    An unparseable cutoff resolves to nothing: without a known evaluation
    date no record can be proven observable.
    """
    cutoff_d = to_date(cutoff)
    if cutoff_d is None:
        return []
    return [r for r in sort_by_date(records) if record_date(r) <= cutoff_d]


def latest_as_of(records: Iterable, cutoff):
    """Newest record observable at ``cutoff``, or None."""
    eligible = resolve_as_of(records, cutoff)
    return eligible[-1] if eligible else None
