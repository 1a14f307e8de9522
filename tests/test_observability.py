from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from observability import JsonLogFormatter, current_log_context, get_logger, log_context, log_event
from runtime_metrics import (
    get_runtime_metrics_snapshot,
    record_binding_metric,
    record_counter_metric,
    record_side_effect_metric,
    reset_runtime_metrics,
)
from subscription import AssetOrderStatus


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_log_context_fields_reach_json_output() -> None:
    logger = get_logger("tests.observability")
    assert logger.name == "trackhub.tests.observability"
    handler = _ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    try:
        with log_context(order_number="A-1", account_id=None):
            with log_context(transaction_id="wx-1"):
                assert current_log_context() == {"order_number": "A-1", "transaction_id": "wx-1"}
                log_event(
                    logger,
                    logging.INFO,
                    "subscription.settlement.processed",
                    status=AssetOrderStatus.PAID,
                    service_end_time=datetime(2024, 2, 11, tzinfo=timezone.utc),
                    name="collides-with-record",
                )
        assert current_log_context() == {}
    finally:
        logger.removeHandler(handler)

    payload = json.loads(JsonLogFormatter().format(handler.records[0]))
    assert payload["event"] == "subscription.settlement.processed"
    assert payload["level"] == "info"
    assert payload["order_number"] == "A-1"
    assert payload["transaction_id"] == "wx-1"
    assert payload["status"] == "paid"
    assert payload["service_end_time"] == "2024-02-11T00:00:00+00:00"
    assert payload["field_name"] == "collides-with-record"
    assert payload["logger"] == "trackhub.tests.observability"
    assert "account_id" not in payload


def test_runtime_metrics_snapshot_groups_by_concern() -> None:
    reset_runtime_metrics()
    record_binding_metric(status="bound", devices=3)
    record_binding_metric(status="precondition_failed")
    record_side_effect_metric(name="alarm_refresh", ok=True, duration_ms=4)
    record_side_effect_metric(name="alarm_refresh", ok=False, duration_ms=10)
    record_counter_metric(name="Subscription.Coupon.Claimed")
    record_counter_metric(name="  ")

    snapshot = get_runtime_metrics_snapshot()

    assert snapshot["bindings"] == {"bound": 1, "precondition_failed": 1}
    assert snapshot["devices_bound"] == 3
    assert snapshot["side_effects"]["alarm_refresh"] == {"calls": 2, "failures": 1, "avg_ms": 7.0, "max_ms": 10.0}
    assert snapshot["counters"] == {"subscription.coupon.claimed": 1}

    reset_runtime_metrics()
    assert get_runtime_metrics_snapshot()["bindings"] == {}
