"""
Service window arithmetic.

Month and year steps go through `relativedelta`, which clamps to the last day
of the target month: 2024-01-31 + 1 month is 2024-02-29, 2023-01-31 + 1 month
is 2023-02-28. Activation and renewal share `add_duration`, so the policy is
the same for both.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

from .domain import DurationRule, ServiceWindow, SubscriptionError
from .models import TimeUnit, Tracker, utc_now


class ServiceWindowError(SubscriptionError):
    pass


def as_utc_aware(dt: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_time_unit(value: str | TimeUnit) -> TimeUnit:
    if isinstance(value, TimeUnit):
        return value
    raw = str(value or "").strip().lower()
    if raw.endswith("s"):
        raw = raw[:-1]
    try:
        return TimeUnit(raw)
    except ValueError as exc:
        raise ServiceWindowError(f"unsupported time unit: {value!r}") from exc


def add_duration(moment: datetime, duration: int, time_unit: str | TimeUnit) -> datetime:
    unit = parse_time_unit(time_unit)
    amount = int(duration)
    if unit == TimeUnit.HOUR:
        delta = relativedelta(hours=amount)
    elif unit == TimeUnit.DAY:
        delta = relativedelta(days=amount)
    elif unit == TimeUnit.WEEK:
        delta = relativedelta(weeks=amount)
    elif unit == TimeUnit.MONTH:
        delta = relativedelta(months=amount)
    else:
        delta = relativedelta(years=amount)
    return as_utc_aware(moment) + delta


def _extend(moment: datetime, rule: DurationRule, gift: Optional[DurationRule]) -> datetime:
    end_time = add_duration(moment, rule.duration, rule.time_unit)
    if gift is None:
        return end_time
    return add_duration(end_time, gift.duration, gift.time_unit)


def calculate_service_time_range_for_open(
    tracker: Tracker,
    rule: DurationRule,
    gift: Optional[DurationRule] = None,
    *,
    now: Optional[datetime] = None,
) -> ServiceWindow:
    """
    Compute the first paid window of a tracker.

    Activating inside the silent period starts billing at `now`; activating
    after it starts billing at the silent period end. A tracker without a
    silent period end is anchored at `now`.
    """

    current = as_utc_aware(now) if now else utc_now()
    silent_end = tracker.silent_period_end_time
    if silent_end is None:
        anchor = current
    else:
        silent_end = as_utc_aware(silent_end)
        anchor = current if current < silent_end else silent_end
    return ServiceWindow(start_time=anchor, end_time=_extend(anchor, rule, gift))


def calculate_service_end_time_for_renew(
    current_service_end_time: datetime,
    rule: DurationRule,
    gift: Optional[DurationRule] = None,
) -> datetime:
    # Always extend from the paid-through time, never from now.
    return _extend(as_utc_aware(current_service_end_time), rule, gift)
