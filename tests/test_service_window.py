from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from subscription import (
    DurationRule,
    ServiceWindowError,
    Tracker,
    add_duration,
    calculate_service_end_time_for_renew,
    calculate_service_time_range_for_open,
)
from subscription.service_window import as_utc_aware, parse_time_unit


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_activation_inside_silent_period_starts_now_and_adds_gift() -> None:
    tracker = Tracker(tracker_number="T-100", tracker_model_id="m-1", silent_period_end_time=_utc(2024, 1, 10))

    window = calculate_service_time_range_for_open(
        tracker,
        DurationRule(duration=30, time_unit="day"),
        DurationRule(duration=7, time_unit="day"),
        now=_utc(2024, 1, 5),
    )

    assert window.start_time == _utc(2024, 1, 5)
    assert window.end_time == _utc(2024, 2, 11)


def test_activation_after_silent_period_starts_at_silent_end() -> None:
    tracker = Tracker(tracker_number="T-101", tracker_model_id="m-1", silent_period_end_time=_utc(2024, 1, 10))

    window = calculate_service_time_range_for_open(
        tracker,
        DurationRule(duration=1, time_unit="month"),
        now=_utc(2024, 3, 1),
    )

    assert window.start_time == _utc(2024, 1, 10)
    assert window.end_time == _utc(2024, 2, 10)


def test_activation_exactly_at_silent_end_uses_silent_end() -> None:
    silent_end = _utc(2024, 6, 1, 12, 0)
    tracker = Tracker(tracker_number="T-102", tracker_model_id="m-1", silent_period_end_time=silent_end)

    window = calculate_service_time_range_for_open(tracker, DurationRule(duration=2, time_unit="hour"), now=silent_end)

    assert window.start_time == silent_end
    assert window.end_time == _utc(2024, 6, 1, 14, 0)


def test_activation_without_silent_period_is_anchored_at_now() -> None:
    tracker = Tracker(tracker_number="T-103", tracker_model_id="m-1", silent_period_end_time=None)

    window = calculate_service_time_range_for_open(
        tracker,
        DurationRule(duration=1, time_unit="year"),
        now=_utc(2025, 3, 15, 8, 30),
    )

    assert window.start_time == _utc(2025, 3, 15, 8, 30)
    assert window.end_time == _utc(2026, 3, 15, 8, 30)


def test_naive_silent_end_from_storage_is_treated_as_utc() -> None:
    tracker = Tracker(tracker_number="T-104", tracker_model_id="m-1", silent_period_end_time=datetime(2024, 1, 10))

    window = calculate_service_time_range_for_open(tracker, DurationRule(duration=1, time_unit="week"), now=_utc(2024, 2, 1))

    assert window.start_time == _utc(2024, 1, 10)
    assert window.end_time == _utc(2024, 1, 17)


def test_renewal_extends_from_current_end_and_clamps_month_end() -> None:
    assert calculate_service_end_time_for_renew(_utc(2024, 1, 31), DurationRule(1, "month")) == _utc(2024, 2, 29)
    assert calculate_service_end_time_for_renew(_utc(2023, 1, 31), DurationRule(1, "month")) == _utc(2023, 2, 28)
    assert calculate_service_end_time_for_renew(_utc(2024, 2, 29), DurationRule(1, "year")) == _utc(2025, 2, 28)


def test_renewal_applies_gift_after_the_paid_period() -> None:
    new_end = calculate_service_end_time_for_renew(
        _utc(2024, 12, 31),
        DurationRule(duration=2, time_unit="month"),
        DurationRule(duration=10, time_unit="day"),
    )

    # 2024-12-31 + 2 months clamps to 2025-02-28, then the gift days are added.
    assert new_end == _utc(2025, 3, 10)


def test_add_duration_accepts_plural_and_mixed_case_units() -> None:
    start = _utc(2024, 1, 1)
    assert add_duration(start, 3, "Days") == _utc(2024, 1, 4)
    assert add_duration(start, 2, "weeks") == _utc(2024, 1, 15)
    assert add_duration(start, 36, "HOURS") == _utc(2024, 1, 2, 12)
    assert add_duration(datetime(2024, 1, 1), 1, "hour") == _utc(2024, 1, 1, 1)


def test_unknown_time_unit_is_rejected() -> None:
    with pytest.raises(ServiceWindowError):
        add_duration(_utc(2024, 1, 1), 1, "fortnight")
    with pytest.raises(ServiceWindowError):
        parse_time_unit("")


def test_as_utc_aware_converts_other_offsets() -> None:
    shanghai = timezone(timedelta(hours=8))
    assert as_utc_aware(datetime(2024, 1, 1, 8, 0, tzinfo=shanghai)) == _utc(2024, 1, 1, 0, 0)
    assert as_utc_aware(datetime(2024, 1, 1, 8, 0)).tzinfo == timezone.utc
