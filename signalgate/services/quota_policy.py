"""Admission decisions for the per-user usage quota.

Pure functions only: the caller loads the stored counters, asks for a
decision and persists the returned state when, and only when, the
decision admits the call.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class WindowKind(str, Enum):
    CALENDAR_DAY = "calendar_day"
    ROLLING = "rolling"


@dataclass(frozen=True)
class QuotaDecision:
    admit: bool
    window_start: Optional[datetime]
    count: int


def _utc_date(value: datetime) -> date:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


def window_elapsed(
    now: datetime,
    window_start: datetime,
    window_kind: WindowKind,
    window: timedelta = timedelta(hours=1),
) -> bool:
    if window_kind == WindowKind.CALENDAR_DAY:
        return _utc_date(now) != _utc_date(window_start)
    return now - window_start > window


def evaluate(
    now: datetime,
    window_start: Optional[datetime],
    count: int,
    limit: int,
    window_kind: WindowKind,
    window: timedelta = timedelta(hours=1),
) -> QuotaDecision:
    if window_start is None or window_elapsed(now, window_start, window_kind, window):
        return QuotaDecision(admit=True, window_start=now, count=1)
    new_count = count + 1
    if new_count > limit:
        # rejected calls leave the stored window untouched
        return QuotaDecision(admit=False, window_start=window_start, count=count)
    return QuotaDecision(admit=True, window_start=window_start, count=new_count)
