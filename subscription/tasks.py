"""Entry points for payment-callback and provisioning jobs."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from observability import get_logger, log_event

from .binding import BindingOrchestrator
from .db import SessionFactory, session_scope
from .integrations import (
    LoggingAlarmConfigService,
    LoggingProfitSharingService,
    RedisChangeEventPublisher,
    RedisDeviceStatusService,
)
from .repository import SubscriptionRepository
from .resolver import resolve_devices_for_binding
from .settlement import SettlementService

_LOGGER = get_logger("trackhub.subscription.tasks")


def build_settlement_service(session_factory: SessionFactory | None = None) -> SettlementService:
    return SettlementService(
        publisher=RedisChangeEventPublisher(),
        profit_sharing=LoggingProfitSharingService(),
        session_factory=session_factory,
    )


def build_binding_orchestrator(session_factory: SessionFactory | None = None) -> BindingOrchestrator:
    return BindingOrchestrator(
        alarm_config=LoggingAlarmConfigService(),
        device_status=RedisDeviceStatusService(),
        publisher=RedisChangeEventPublisher(),
        session_factory=session_factory,
    )


def run_settle_payment(
    service: SettlementService,
    *,
    order_number: str,
    amount_cents: int,
    paid_at: datetime,
    transaction_id: str,
    attach: Optional[str] = None,
) -> dict[str, Any]:
    """Settle a payment callback by order number. Missing rows are reported, not raised."""
    lookup = service.get_order_and_device_data_by_order_number(order_number)
    if lookup.order is None:
        log_event(_LOGGER, logging.ERROR, "subscription.pay_callback.order_not_found", order_number=order_number)
        return {"status": "order_not_found", "order_number": order_number}
    if lookup.asset is None or lookup.tracker is None:
        log_event(
            _LOGGER,
            logging.ERROR,
            "subscription.pay_callback.device_not_found",
            order_number=order_number,
            order_id=lookup.order.id,
        )
        return {"status": "device_not_found", "order_number": order_number, "order_id": lookup.order.id}

    outcome = service.handle_pay_success(
        lookup.order,
        amount_cents,
        paid_at,
        lookup.tracker,
        lookup.asset,
        transaction_id,
        attach,
    )
    return outcome.as_dict()


def run_settle_refund(
    service: SettlementService,
    *,
    refund_order_number: str,
    amount_cents: int,
    refunded_at: datetime,
) -> dict[str, Any]:
    order = service.get_order_by_refund_order_number(refund_order_number)
    if order is None:
        log_event(
            _LOGGER,
            logging.ERROR,
            "subscription.refund_callback.order_not_found",
            refund_order_number=refund_order_number,
        )
        return {"status": "order_not_found", "refund_order_number": refund_order_number}
    return service.handle_refund_success(order, amount_cents, refunded_at).as_dict()


def run_bind_trackers(
    orchestrator: BindingOrchestrator,
    *,
    account_id: str,
    user_id: str,
    tracker_numbers: list[str],
    session_factory: SessionFactory | None = None,
) -> dict[str, Any]:
    """Resolve packages for the given trackers and bind them to a user in one batch."""
    with session_scope(session_factory) as session:
        repo = SubscriptionRepository(session)
        user = repo.get_user(user_id)
        trackers = repo.get_trackers_with_assets(tracker_numbers)
        merchant_ids = sorted(
            {tracker.asset.merchant_id for tracker in trackers if tracker.asset is not None and tracker.asset.merchant_id}
        )
        packages = repo.get_device_packages(merchant_ids)
    if user is None:
        return {"status": "user_not_found", "user_id": user_id}
    missing = sorted(set(tracker_numbers) - {tracker.tracker_number for tracker in trackers})
    if missing:
        return {"status": "tracker_not_found", "tracker_numbers": missing}

    devices = resolve_devices_for_binding(trackers, packages)
    outcome = orchestrator.bind_devices_to_user(account_id, devices, user)
    return {
        "status": outcome.status,
        "reason": outcome.reason,
        "asset_ids": list(outcome.asset_ids),
        "side_effect_failures": [item.name for item in outcome.side_effects.failures],
    }
