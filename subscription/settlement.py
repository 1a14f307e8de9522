"""
Settle payment and refund callbacks against asset service-period orders.

Each callback is applied at most once: the order row carries write-once
timestamps guarded by conditional updates, and a replay comes back as a
`duplicate` outcome. Change events and profit sharing run after commit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from config import RENEWAL_COUPON_ACTIVITY
from observability import get_logger, log_context, log_event
from runtime_metrics import record_counter_metric, record_settlement_metric

from .db import SessionFactory, session_scope
from .domain import (
    ChangeEvent,
    DeviceDataLookup,
    DurationRule,
    OrderDeviceLookup,
    SettlementOutcome,
    SettlementStatus,
    SideEffectResult,
)
from .integrations import ChangeEventPublisher, ProfitSharingService
from .models import (
    Asset,
    AssetOrderStatus,
    AssetServicePeriodOrder,
    OrderTarget,
    Tracker,
    utc_now,
)
from .repository import SubscriptionRepository
from .service_window import (
    ServiceWindowError,
    calculate_service_end_time_for_renew,
    calculate_service_time_range_for_open,
    parse_time_unit,
)
from .side_effects import collect, run_side_effect

_LOGGER = get_logger("trackhub.subscription.settlement")


def map_order_status(order: AssetServicePeriodOrder) -> AssetOrderStatus:
    if order.paid_at is None:
        return AssetOrderStatus.UNPAID
    if order.refunded_at is not None:
        return AssetOrderStatus.REFUNDED
    if order.refund_apply_at is not None:
        return AssetOrderStatus.REFUND_PENDING
    return AssetOrderStatus.PAID


def order_service_rules(order: AssetServicePeriodOrder) -> tuple[DurationRule, Optional[DurationRule]]:
    """Service period and optional gift of an order; raises ServiceWindowError on unknown units."""
    rule = DurationRule(duration=int(order.service_period), time_unit=order.service_period_time_unit)
    parse_time_unit(rule.time_unit)
    if order.gift_duration is None or order.gift_time_unit is None:
        return rule, None
    gift = DurationRule(duration=int(order.gift_duration), time_unit=order.gift_time_unit)
    parse_time_unit(gift.time_unit)
    return rule, gift


class SettlementService:
    """
    Apply payment and refund callbacks to asset service orders.

    `processed_at` and `refunded_at` are write-once guards updated with a
    conditional UPDATE, so only one of several concurrent callbacks for the
    same order can win. Losers report a duplicate outcome. CDC events and
    profit-sharing requests run after the settlement commit and never undo it.
    """

    def __init__(
        self,
        *,
        publisher: ChangeEventPublisher,
        profit_sharing: ProfitSharingService,
        session_factory: SessionFactory | None = None,
        clock: Callable[[], datetime] = utc_now,
        coupon_activity: str = RENEWAL_COUPON_ACTIVITY,
    ) -> None:
        self._publisher = publisher
        self._profit_sharing = profit_sharing
        self._session_factory = session_factory
        self._clock = clock
        self._coupon_activity = coupon_activity

    # -- lookups -----------------------------------------------------------

    def get_order_by_refund_order_number(self, refund_order_number: str) -> Optional[AssetServicePeriodOrder]:
        with session_scope(self._session_factory) as session:
            return SubscriptionRepository(session).get_order_by_refund_order_number(refund_order_number)

    def get_order_and_device_data_by_order_number(self, order_number: str) -> OrderDeviceLookup:
        with session_scope(self._session_factory) as session:
            repo = SubscriptionRepository(session)
            order = repo.get_order_by_order_number(order_number)
            if order is None:
                return OrderDeviceLookup()
            asset = repo.get_asset(order.asset_id)
            if asset is None:
                return OrderDeviceLookup(order=order)
            return OrderDeviceLookup(order=order, asset=asset, tracker=asset.tracker)

    def get_device_data_by_asset_id(self, user_id: str, asset_id: str) -> DeviceDataLookup:
        with session_scope(self._session_factory) as session:
            asset = SubscriptionRepository(session).get_user_asset(user_id, asset_id)
            if asset is None:
                return DeviceDataLookup()
            tracker = asset.tracker
            return DeviceDataLookup(
                tracker=tracker,
                tracker_model=tracker.tracker_model if tracker is not None else None,
                asset=asset,
                user=asset.user,
            )

    # -- payment -----------------------------------------------------------

    def handle_pay_success(
        self,
        order: AssetServicePeriodOrder,
        amount_cents: int,
        paid_at: datetime,
        tracker: Tracker,
        asset: Asset,
        transaction_id: str,
        attach: Optional[str] = None,
    ) -> SettlementOutcome:
        with log_context(order_number=order.order_number, transaction_id=transaction_id):
            if order.processed_at is not None:
                return self._finish(order, "duplicate", "order has already been processed")

            target = str(order.order_target or "").strip().lower()
            try:
                rule, gift = order_service_rules(order)
            except ServiceWindowError as exc:
                return self._finish(order, "invalid", str(exc))

            if target == OrderTarget.ACTIVATE.value:
                return self._handle_activate_success(
                    order, amount_cents, paid_at, tracker, asset, transaction_id, rule, gift
                )
            if target == OrderTarget.RENEWAL.value:
                return self._handle_renew_success(order, amount_cents, paid_at, asset, transaction_id, attach, rule, gift)
            return self._finish(order, "invalid", f"unknown order target: {order.order_target}")

    def _handle_activate_success(
        self,
        order: AssetServicePeriodOrder,
        amount_cents: int,
        paid_at: datetime,
        tracker: Tracker,
        asset: Asset,
        transaction_id: str,
        rule: DurationRule,
        gift: Optional[DurationRule],
    ) -> SettlementOutcome:
        now = self._clock()
        window = calculate_service_time_range_for_open(tracker, rule, gift, now=now)

        with session_scope(self._session_factory) as session:
            repo = SubscriptionRepository(session)
            if not repo.mark_order_paid(
                order.id,
                paid_amount_cents=amount_cents,
                paid_at=paid_at,
                external_order_number=transaction_id,
                now=now,
            ):
                return self._finish(order, "duplicate", "order was processed by a concurrent callback")
            repo.update_asset_service_window(asset.id, start_time=window.start_time, end_time=window.end_time)
            paid_order = repo.get_order(order.id) or order

        results = [
            run_side_effect("cdc_publish", tracker.id, self._publisher.send, ChangeEvent(id=tracker.id)),
            *self._request_profit_sharing(paid_order),
        ]
        return self._finish(
            order,
            "processed",
            side_effects=results,
            asset_id=asset.id,
            service_start_time=window.start_time,
            service_end_time=window.end_time,
        )

    def _handle_renew_success(
        self,
        order: AssetServicePeriodOrder,
        amount_cents: int,
        paid_at: datetime,
        asset: Asset,
        transaction_id: str,
        attach: Optional[str],
        rule: DurationRule,
        gift: Optional[DurationRule],
    ) -> SettlementOutcome:
        now = self._clock()
        coupon_id = str(attach or "").strip()

        with session_scope(self._session_factory) as session:
            repo = SubscriptionRepository(session)
            if not repo.mark_order_paid(
                order.id,
                paid_amount_cents=amount_cents,
                paid_at=paid_at,
                external_order_number=transaction_id,
                now=now,
            ):
                return self._finish(order, "duplicate", "order was processed by a concurrent callback")

            # The payment is recorded either way; the asset is left alone.
            current_asset = repo.get_asset(asset.id)
            if current_asset is None or current_asset.service_end_time is None:
                return self._finish(
                    order,
                    "precondition_failed",
                    f"asset {asset.id} has no service end time, renewal is not possible",
                )

            if coupon_id:
                claimed = repo.claim_coupon(coupon_id, activity=self._coupon_activity, order_id=order.id, now=now)
                record_counter_metric(name="subscription.coupon.claimed" if claimed else "subscription.coupon.skipped")
                log_event(
                    _LOGGER,
                    logging.INFO,
                    "subscription.settlement.coupon_claimed" if claimed else "subscription.settlement.coupon_skipped",
                    order_id=order.id,
                    coupon_id=coupon_id,
                )

            new_end_time = calculate_service_end_time_for_renew(current_asset.service_end_time, rule, gift)
            repo.update_asset_service_end_time(current_asset.id, end_time=new_end_time)
            tracker_id = current_asset.tracker_id
            paid_order = repo.get_order(order.id) or order

        results: list[SideEffectResult] = []
        if tracker_id is not None:
            results.append(run_side_effect("cdc_publish", tracker_id, self._publisher.send, ChangeEvent(id=tracker_id)))
        results.extend(self._request_profit_sharing(paid_order))
        return self._finish(
            order,
            "processed",
            side_effects=results,
            asset_id=asset.id,
            service_end_time=new_end_time,
        )

    def _request_profit_sharing(self, order: AssetServicePeriodOrder) -> list[SideEffectResult]:
        if not order.is_need_profit_sharing:
            return []
        return [
            run_side_effect(
                "profit_sharing",
                order.id,
                self._profit_sharing.create_profit_sharing_record,
                order,
            )
        ]

    # -- refund ------------------------------------------------------------

    def handle_refund_success(
        self,
        order: AssetServicePeriodOrder,
        amount_cents: int,
        refunded_at: datetime,
    ) -> SettlementOutcome:
        """
        Record a refund. Service time is intentionally not rolled back: a
        refund is a financial event only.
        """

        with log_context(order_number=order.order_number, refund_order_number=order.refund_order_number):
            if order.refunded_at is not None:
                return self._finish(order, "duplicate", "order has already been refunded")
            with session_scope(self._session_factory) as session:
                updated = SubscriptionRepository(session).mark_order_refunded(
                    order.id,
                    refunded_amount_cents=amount_cents,
                    refunded_at=refunded_at,
                )
            if not updated:
                return self._finish(order, "duplicate", "order was refunded by a concurrent callback")
            return self._finish(order, "processed", refunded_amount_cents=amount_cents)

    def _finish(
        self,
        order: AssetServicePeriodOrder,
        status: SettlementStatus,
        reason: Optional[str] = None,
        *,
        side_effects: Optional[list[SideEffectResult]] = None,
        **fields: object,
    ) -> SettlementOutcome:
        outcome = SettlementOutcome(
            status=status,
            order_id=order.id,
            reason=reason,
            side_effects=collect(list(side_effects or [])),
        )
        level = {
            "processed": logging.INFO,
            "duplicate": logging.INFO,
            "precondition_failed": logging.WARNING,
            "invalid": logging.ERROR,
        }[status]
        record_settlement_metric(status=status)
        log_event(
            _LOGGER,
            level,
            f"subscription.settlement.{status}",
            order_id=order.id,
            order_number=order.order_number,
            order_target=order.order_target,
            reason=reason,
            side_effect_failures=[item.name for item in outcome.side_effects.failures],
            **fields,
        )
        return outcome
