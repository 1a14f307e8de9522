from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from observability import get_logger, log_event
from runtime_metrics import record_side_effect_metric

from .domain import SideEffectReport, SideEffectResult

_LOGGER = get_logger("trackhub.subscription.side_effects")


def run_side_effect(name: str, target: str, call: Callable[..., Any], *args: Any) -> SideEffectResult:
    """Run one post-commit call; failures are logged and reported, never raised."""
    started = time.perf_counter()
    try:
        call(*args)
    except Exception as exc:  # noqa: BLE001
        record_side_effect_metric(name=name, ok=False, duration_ms=(time.perf_counter() - started) * 1000)
        log_event(
            _LOGGER,
            logging.ERROR,
            "subscription.side_effect.failed",
            side_effect=name,
            target=target,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return SideEffectResult(name=name, target=target, ok=False, error=str(exc))
    record_side_effect_metric(name=name, ok=True, duration_ms=(time.perf_counter() - started) * 1000)
    return SideEffectResult(name=name, target=target, ok=True)


def collect(results: list[SideEffectResult]) -> SideEffectReport:
    return SideEffectReport(results=tuple(results))
