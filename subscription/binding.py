"""Bind trackers to a user account in one transaction, then notify collaborators."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Final

from config import NOTIFICATION_WINDOW_END, NOTIFICATION_WINDOW_START
from observability import get_logger, log_context, log_event
from runtime_metrics import record_binding_metric

from .db import SessionFactory, session_scope
from .domain import (
    BindingOutcome,
    ChangeEvent,
    DeviceBinding,
    DeviceServiceWindow,
    SideEffectReport,
    SubscriptionError,
    TrackerRef,
)
from .integrations import AlarmConfigService, ChangeEventPublisher, DeviceStatusService
from .models import AlarmType, AppUser, utc_now
from .repository import SubscriptionRepository, SubscriptionStateError
from .service_window import calculate_service_time_range_for_open
from .side_effects import collect, run_side_effect

_LOGGER = get_logger("trackhub.subscription.binding")

# One notification config per member is created for every bound asset.
NOTIFICATION_ALARM_TYPES: Final[tuple[AlarmType, ...]] = tuple(AlarmType)


class BindingPreconditionError(SubscriptionError):
    pass


def compute_service_windows(devices: Sequence[DeviceBinding], *, now: datetime) -> list[DeviceServiceWindow]:
    """Packages that open on bind get a window now; the rest wait for a recharge."""
    windows: list[DeviceServiceWindow] = []
    for device in devices:
        opens_on_bind = bool(device.package.is_related_open)
        window = None
        if opens_on_bind and device.open_rule is not None:
            window = calculate_service_time_range_for_open(device.tracker, device.open_rule, None, now=now)
        windows.append(DeviceServiceWindow(tracker=device.tracker, window=window, opens_on_bind=opens_on_bind))
    return windows


class BindingOrchestrator:
    def __init__(
        self,
        *,
        alarm_config: AlarmConfigService,
        device_status: DeviceStatusService,
        publisher: ChangeEventPublisher,
        session_factory: SessionFactory | None = None,
        clock: Callable[[], datetime] = utc_now,
        alarm_types: Sequence[AlarmType] = NOTIFICATION_ALARM_TYPES,
    ) -> None:
        self._alarm_config = alarm_config
        self._device_status = device_status
        self._publisher = publisher
        self._session_factory = session_factory
        self._clock = clock
        self._alarm_types = tuple(alarm_types)

    def bind_device_to_user(self, account_id: str, device: DeviceBinding, user: AppUser) -> BindingOutcome:
        return self.bind_devices_to_user(account_id, [device], user)

    def bind_devices_to_user(
        self,
        account_id: str,
        devices: Sequence[DeviceBinding],
        user: AppUser,
    ) -> BindingOutcome:
        with log_context(account_id=account_id, user_id=user.id):
            now = self._clock()
            windows = compute_service_windows(devices, now=now)
            try:
                asset_ids = self._bind_core(account_id, windows, user.id, now)
            except BindingPreconditionError as exc:
                record_binding_metric(status="precondition_failed")
                log_event(_LOGGER, logging.WARNING, "subscription.binding.precondition_failed", reason=str(exc))
                return BindingOutcome(status="precondition_failed", reason=str(exc))

            report = self._fan_out(windows)
            record_binding_metric(status="bound", devices=len(asset_ids))
            log_event(
                _LOGGER,
                logging.INFO,
                "subscription.binding.bound",
                asset_ids=asset_ids,
                side_effect_failures=[item.name for item in report.failures],
            )
            return BindingOutcome(status="bound", asset_ids=tuple(asset_ids), side_effects=report)

    def _bind_core(
        self,
        account_id: str,
        windows: Sequence[DeviceServiceWindow],
        user_id: str,
        now: datetime,
    ) -> list[str]:
        """All asset updates and notification configs commit together or not at all."""
        asset_ids: list[str] = []
        with session_scope(self._session_factory) as session:
            repo = SubscriptionRepository(session)
            for item in windows:
                snapshot = item.tracker.asset
                if snapshot is None:
                    raise SubscriptionStateError(f"tracker {item.tracker.tracker_number} has no asset")
                asset = repo.get_asset(snapshot.id)
                if asset is None:
                    raise SubscriptionStateError(f"asset not found: {snapshot.id}")

                if asset.service_end_time is not None:
                    # Already activated once: keep the paid-through time.
                    repo.bind_asset_to_user(asset.id, user_id=user_id, now=now)
                elif item.window is not None:
                    repo.bind_asset_to_user(
                        asset.id,
                        user_id=user_id,
                        now=now,
                        service_end_time=item.window.end_time,
                    )
                elif item.opens_on_bind:
                    raise BindingPreconditionError(
                        f"asset {asset.id} (tracker {item.tracker.tracker_number}) opens on bind "
                        "but its package has no open rule"
                    )
                else:
                    # Billing deferred to a recharge; service_end_time stays NULL.
                    repo.bind_asset_to_user(asset.id, user_id=user_id, now=now)

                repo.reset_notification_configs(
                    asset.id,
                    kinds=self._alarm_types,
                    account_id=account_id,
                    window_start=NOTIFICATION_WINDOW_START,
                    window_end=NOTIFICATION_WINDOW_END,
                    now=now,
                )
                asset_ids.append(asset.id)
        return asset_ids

    def _fan_out(self, windows: Sequence[DeviceServiceWindow]) -> SideEffectReport:
        """Post-commit calls; every one is attempted regardless of earlier failures."""
        results = [
            run_side_effect("alarm_refresh", item.tracker.asset.id, self._alarm_config.refresh, item.tracker.asset.id)
            for item in windows
        ]
        refs = [TrackerRef(id=item.tracker.id, tracker_number=item.tracker.tracker_number) for item in windows]
        results.append(
            run_side_effect(
                "realtime_status_clear",
                ",".join(ref.id for ref in refs),
                self._device_status.batch_clear_realtime_status,
                refs,
            )
        )
        events = [ChangeEvent(id=item.tracker.id) for item in windows]
        results.append(
            run_side_effect(
                "cdc_publish",
                ",".join(event.id for event in events),
                self._publisher.send_batch,
                events,
            )
        )
        return collect(results)
