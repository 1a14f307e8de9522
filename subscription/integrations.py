"""Collaborators the engine calls after its own writes commit."""

from __future__ import annotations

import abc
import json
import logging
import threading
from collections import deque
from collections.abc import Sequence
from typing import Any, Optional

import redis

from config import CDC_REDIS_KEY, REDIS_DISABLED, REDIS_URL, TRACKER_STATUS_KEY_PREFIX
from observability import get_logger, log_event

from .domain import ChangeEvent, TrackerRef
from .models import AssetServicePeriodOrder

_LOGGER = get_logger("trackhub.subscription.integrations")

MEMORY_EVENT_LIMIT = 1000


def _redis_memory_mode(redis_url: str) -> bool:
    return REDIS_DISABLED or str(redis_url or "").startswith("memory://")


def _build_redis_client(redis_url: str) -> redis.Redis | None:
    """
    Client for a configured Redis, or None when Redis is switched off.

    An unreachable server still yields a client: commands then raise, so
    post-commit calls are reported as failed instead of silently dropped.
    """

    if _redis_memory_mode(redis_url):
        return None
    client = redis.Redis.from_url(redis_url, decode_responses=True)
    try:
        client.ping()
    except redis.RedisError as exc:
        log_event(_LOGGER, logging.WARNING, "integrations.redis_unavailable", redis_url=redis_url, error=str(exc))
    return client


class AlarmConfigService(abc.ABC):
    @abc.abstractmethod
    def refresh(self, asset_id: str) -> None:
        """Recompute alarm configuration for one asset from its current rows."""


class DeviceStatusService(abc.ABC):
    @abc.abstractmethod
    def batch_clear_realtime_status(self, devices: Sequence[TrackerRef]) -> None:
        """Drop cached live status for the given trackers."""


class ProfitSharingService(abc.ABC):
    @abc.abstractmethod
    def create_profit_sharing_record(self, order: AssetServicePeriodOrder) -> None:
        raise NotImplementedError


class ChangeEventPublisher(abc.ABC):
    @abc.abstractmethod
    def send(self, event: ChangeEvent) -> None:
        raise NotImplementedError

    def send_batch(self, events: Sequence[ChangeEvent]) -> None:
        for event in events:
            self.send(event)


class LoggingAlarmConfigService(AlarmConfigService):
    def refresh(self, asset_id: str) -> None:
        log_event(_LOGGER, logging.INFO, "alarm_config.refresh_requested", asset_id=asset_id)


class LoggingProfitSharingService(ProfitSharingService):
    def create_profit_sharing_record(self, order: AssetServicePeriodOrder) -> None:
        log_event(
            _LOGGER,
            logging.INFO,
            "profit_sharing.record_requested",
            order_id=order.id,
            order_number=order.order_number,
            paid_amount_cents=order.paid_amount_cents,
        )


class RedisDeviceStatusService(DeviceStatusService):
    def __init__(self, client: Optional[redis.Redis] = None, *, key_prefix: str = TRACKER_STATUS_KEY_PREFIX) -> None:
        self._client = client if client is not None else _build_redis_client(REDIS_URL)
        self._key_prefix = key_prefix

    def batch_clear_realtime_status(self, devices: Sequence[TrackerRef]) -> None:
        keys = [f"{self._key_prefix}{device.tracker_number}" for device in devices if device.tracker_number]
        if not keys:
            return
        if self._client is None:
            log_event(_LOGGER, logging.INFO, "device_status.clear_skipped_no_redis", keys=keys)
            return
        pipe = self._client.pipeline()
        for key in keys:
            pipe.delete(key)
        pipe.execute()


class RedisChangeEventPublisher(ChangeEventPublisher):
    """
    Publish change events to a Redis list consumed by the CDC pipeline.

    With Redis switched off (`REDIS_DISABLED` or a `memory://` URL) the most
    recent events are kept in-process so local runs and tests can inspect them.
    """

    def __init__(self, client: Optional[redis.Redis] = None, *, key: str = CDC_REDIS_KEY) -> None:
        self._client = client if client is not None else _build_redis_client(REDIS_URL)
        self._key = key
        self._memory_lock = threading.Lock()
        self._memory_events: deque[dict[str, Any]] = deque(maxlen=MEMORY_EVENT_LIMIT)

    @property
    def buffered_events(self) -> list[dict[str, Any]]:
        with self._memory_lock:
            return list(self._memory_events)

    def send(self, event: ChangeEvent) -> None:
        self.send_batch([event])

    def send_batch(self, events: Sequence[ChangeEvent]) -> None:
        payloads = [event.as_dict() for event in events]
        if not payloads:
            return
        if self._client is None:
            with self._memory_lock:
                self._memory_events.extend(payloads)
            return
        self._client.rpush(self._key, *[json.dumps(item, ensure_ascii=False) for item in payloads])
