from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Any


@dataclass
class _CallStats:
    calls: int = 0
    failures: int = 0
    sum_ms: float = 0.0
    max_ms: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "failures": self.failures,
            "avg_ms": round(self.sum_ms / self.calls, 2) if self.calls > 0 else 0.0,
            "max_ms": round(self.max_ms, 2),
        }


class RuntimeMetrics:
    """Process-local tallies of settlement outcomes, binding batches and post-commit calls."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._started_at = int(time.time())
        self._settlements: dict[str, int] = defaultdict(int)
        self._bindings: dict[str, int] = defaultdict(int)
        self._devices_bound = 0
        self._side_effects: dict[str, _CallStats] = defaultdict(_CallStats)
        self._counters: dict[str, int] = defaultdict(int)

    def record_settlement(self, *, status: str) -> None:
        with self._lock:
            self._settlements[_metric_name(status)] += 1

    def record_binding(self, *, status: str, devices: int = 0) -> None:
        with self._lock:
            self._bindings[_metric_name(status)] += 1
            self._devices_bound += max(0, int(devices))

    def record_side_effect(self, *, name: str, ok: bool, duration_ms: int | float) -> None:
        duration = max(0.0, float(duration_ms))
        with self._lock:
            stats = self._side_effects[_metric_name(name)]
            stats.calls += 1
            stats.failures += 0 if ok else 1
            stats.sum_ms += duration
            stats.max_ms = max(stats.max_ms, duration)

    def record_counter(self, *, name: str, value: int = 1) -> None:
        metric = _metric_name(name)
        if not metric:
            return
        with self._lock:
            self._counters[metric] += int(value)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "started_at": self._started_at,
                "uptime_seconds": max(0, int(time.time()) - self._started_at),
                "settlements": dict(sorted(self._settlements.items())),
                "bindings": dict(sorted(self._bindings.items())),
                "devices_bound": self._devices_bound,
                "side_effects": {key: stats.as_dict() for key, stats in sorted(self._side_effects.items())},
                "counters": dict(sorted(self._counters.items())),
            }

    def reset(self) -> None:
        with self._lock:
            self._settlements.clear()
            self._bindings.clear()
            self._devices_bound = 0
            self._side_effects.clear()
            self._counters.clear()


def _metric_name(value: str) -> str:
    return str(value or "").strip().lower()


_RUNTIME_METRICS = RuntimeMetrics()


def get_runtime_metrics_snapshot() -> dict[str, Any]:
    return _RUNTIME_METRICS.snapshot()


def record_settlement_metric(*, status: str) -> None:
    _RUNTIME_METRICS.record_settlement(status=status)


def record_binding_metric(*, status: str, devices: int = 0) -> None:
    _RUNTIME_METRICS.record_binding(status=status, devices=devices)


def record_side_effect_metric(*, name: str, ok: bool, duration_ms: int | float) -> None:
    _RUNTIME_METRICS.record_side_effect(name=name, ok=ok, duration_ms=duration_ms)


def record_counter_metric(*, name: str, value: int = 1) -> None:
    _RUNTIME_METRICS.record_counter(name=name, value=value)


def reset_runtime_metrics() -> None:
    _RUNTIME_METRICS.reset()
