from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session, selectinload

from .domain import DurationRule, SubscriptionError
from .models import (
    AlarmType,
    AppUser,
    Asset,
    AssetNotificationConfig,
    AssetServicePeriodOrder,
    Coupon,
    DeviceBindRule,
    DevicePackage,
    DevicePackageModel,
    DeviceRechargeRule,
    OrderTarget,
    ProfitSharingRule,
    Tracker,
    TrackerModel,
    utc_now,
)
from .service_window import as_utc_aware

_UNSET = object()


class SubscriptionStateError(SubscriptionError):
    pass


def _now_or(now: Optional[datetime]) -> datetime:
    return as_utc_aware(now) if now else utc_now()


class SubscriptionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    # -- catalog -----------------------------------------------------------

    def create_user(self, *, nickname: Optional[str] = None, phone: Optional[str] = None) -> AppUser:
        user = AppUser(nickname=nickname, phone=phone)
        self.session.add(user)
        self.session.flush()
        return user

    def get_user(self, user_id: str) -> Optional[AppUser]:
        key = str(user_id or "").strip()
        if not key:
            return None
        return self.session.get(AppUser, key)

    def create_tracker_model(self, code: str, name: Optional[str] = None) -> TrackerModel:
        normalized = str(code or "").strip()
        if not normalized:
            raise SubscriptionStateError("tracker model code is required")
        existing = self.session.scalar(select(TrackerModel).where(TrackerModel.code == normalized))
        if existing is not None:
            return existing
        model = TrackerModel(code=normalized, name=str(name or normalized).strip())
        self.session.add(model)
        self.session.flush()
        return model

    def create_device_package(
        self,
        *,
        name: str,
        tracker_model_ids: Sequence[str],
        merchant_id: Optional[str] = None,
        is_related_open: bool = False,
        bind_rule: Optional[DurationRule] = None,
        recharge_rules: Sequence[dict[str, Any]] = (),
    ) -> DevicePackage:
        """
        Create a package with its compatible models and rules.

        `recharge_rules` items accept `duration`, `time_unit`, `price_cents`,
        `is_opening_rule` and `profit_sharing` (list of `(receiver_id, ratio_bps)`).
        List order becomes the rule order.
        """

        if not tracker_model_ids:
            raise SubscriptionStateError("device package requires at least one tracker model")
        package = DevicePackage(
            name=str(name).strip(),
            merchant_id=(str(merchant_id).strip() or None) if merchant_id is not None else None,
            is_related_open=bool(is_related_open),
        )
        for position, model_id in enumerate(tracker_model_ids):
            package.model_links.append(DevicePackageModel(tracker_model_id=model_id, position=position))
        if bind_rule is not None:
            package.bind_rule = DeviceBindRule(
                charge_duration=int(bind_rule.duration),
                charge_time_unit=str(bind_rule.time_unit),
            )
        for position, raw in enumerate(recharge_rules):
            rule = DeviceRechargeRule(
                charge_duration=int(raw["duration"]),
                charge_time_unit=str(raw["time_unit"]),
                price_cents=int(raw.get("price_cents") or 0),
                is_opening_rule=bool(raw.get("is_opening_rule", False)),
                position=position,
            )
            for receiver_id, ratio_bps in raw.get("profit_sharing") or ():
                rule.profit_sharing_rules.append(ProfitSharingRule(receiver_id=receiver_id, ratio_bps=int(ratio_bps)))
            package.recharge_rules.append(rule)
        self.session.add(package)
        self.session.flush()
        return package

    def get_device_packages(self, merchant_ids: Iterable[str]) -> list[DevicePackage]:
        """Merchant packages for `merchant_ids` plus every platform package, oldest first."""
        normalized = [str(item).strip() for item in merchant_ids if str(item or "").strip()]
        condition = DevicePackage.merchant_id.is_(None)
        if normalized:
            condition = or_(DevicePackage.merchant_id.in_(normalized), condition)
        query = (
            select(DevicePackage)
            .options(
                selectinload(DevicePackage.bind_rule),
                selectinload(DevicePackage.recharge_rules).selectinload(DeviceRechargeRule.profit_sharing_rules),
                selectinload(DevicePackage.model_links).selectinload(DevicePackageModel.tracker_model),
            )
            .where(condition)
            .order_by(DevicePackage.created_at.asc(), DevicePackage.id.asc())
        )
        return list(self.session.scalars(query).all())

    # -- devices -----------------------------------------------------------

    def create_tracker(
        self,
        *,
        tracker_number: str,
        tracker_model_id: str,
        silent_period_end_time: Optional[datetime] = None,
        merchant_id: Optional[str] = None,
    ) -> Tracker:
        """Provision a tracker together with its (unbound, never activated) asset."""
        number = str(tracker_number or "").strip()
        if not number:
            raise SubscriptionStateError("tracker_number is required")
        tracker = Tracker(
            tracker_number=number,
            tracker_model_id=tracker_model_id,
            silent_period_end_time=as_utc_aware(silent_period_end_time) if silent_period_end_time else None,
        )
        tracker.asset = Asset(merchant_id=merchant_id)
        self.session.add(tracker)
        self.session.flush()
        return tracker

    def get_trackers_with_assets(self, tracker_numbers: Iterable[str]) -> list[Tracker]:
        numbers = [str(item).strip() for item in tracker_numbers if str(item or "").strip()]
        if not numbers:
            return []
        query = (
            select(Tracker)
            .options(selectinload(Tracker.asset), selectinload(Tracker.tracker_model))
            .where(Tracker.tracker_number.in_(numbers))
        )
        by_number = {tracker.tracker_number: tracker for tracker in self.session.scalars(query).all()}
        return [by_number[number] for number in numbers if number in by_number]

    def batch_query_tracker_assets(self, trackers: Iterable[Tracker]) -> list[Asset]:
        tracker_ids = [tracker.id for tracker in trackers]
        if not tracker_ids:
            return []
        return list(self.session.scalars(select(Asset).where(Asset.tracker_id.in_(tracker_ids))).all())

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        query = (
            select(Asset)
            .options(selectinload(Asset.tracker).selectinload(Tracker.tracker_model))
            .where(Asset.id == asset_id)
        )
        return self.session.scalar(query)

    def get_user_asset(self, user_id: str, asset_id: str) -> Optional[Asset]:
        query = (
            select(Asset)
            .options(
                selectinload(Asset.tracker).selectinload(Tracker.tracker_model),
                selectinload(Asset.user),
            )
            .where(Asset.id == asset_id, Asset.user_id == user_id)
        )
        return self.session.scalar(query)

    def bind_asset_to_user(
        self,
        asset_id: str,
        *,
        user_id: str,
        now: Optional[datetime] = None,
        service_end_time: Any = _UNSET,
    ) -> None:
        current = _now_or(now)
        values: dict[str, Any] = {
            "user_id": user_id,
            "service_start_time": current,
            "tracker_bound_at": current,
            "updated_at": current,
        }
        if service_end_time is not _UNSET:
            values["service_end_time"] = as_utc_aware(service_end_time)
        result = self.session.execute(update(Asset).where(Asset.id == asset_id).values(**values))
        if int(result.rowcount or 0) != 1:
            raise SubscriptionStateError(f"asset not found: {asset_id}")

    def update_asset_service_window(self, asset_id: str, *, start_time: datetime, end_time: datetime) -> None:
        result = self.session.execute(
            update(Asset)
            .where(Asset.id == asset_id)
            .values(
                service_start_time=as_utc_aware(start_time),
                service_end_time=as_utc_aware(end_time),
                updated_at=utc_now(),
            )
        )
        if int(result.rowcount or 0) != 1:
            raise SubscriptionStateError(f"asset not found: {asset_id}")

    def update_asset_service_end_time(self, asset_id: str, *, end_time: datetime) -> None:
        result = self.session.execute(
            update(Asset)
            .where(Asset.id == asset_id)
            .values(service_end_time=as_utc_aware(end_time), updated_at=utc_now())
        )
        if int(result.rowcount or 0) != 1:
            raise SubscriptionStateError(f"asset not found: {asset_id}")

    def reset_notification_configs(
        self,
        asset_id: str,
        *,
        kinds: Sequence[AlarmType],
        account_id: Optional[str],
        window_start: str,
        window_end: str,
        now: Optional[datetime] = None,
    ) -> list[AssetNotificationConfig]:
        """Replace an asset's notification configs with disabled defaults, one per kind."""
        current = _now_or(now)
        self.session.execute(delete(AssetNotificationConfig).where(AssetNotificationConfig.asset_id == asset_id))
        configs = [
            AssetNotificationConfig(
                asset_id=asset_id,
                kind=kind,
                app_notification=False,
                sms_notification=False,
                phone_notification=False,
                wechat_notification=False,
                phone_alarm_start_time=window_start,
                phone_alarm_end_time=window_end,
                sms_alarm_start_time=window_start,
                sms_alarm_end_time=window_end,
                created_by=account_id,
                updated_by=account_id,
                created_at=current,
                updated_at=current,
            )
            for kind in kinds
        ]
        self.session.add_all(configs)
        self.session.flush()
        return configs

    def list_notification_configs(self, asset_id: str) -> list[AssetNotificationConfig]:
        query = select(AssetNotificationConfig).where(AssetNotificationConfig.asset_id == asset_id)
        return list(self.session.scalars(query).all())

    # -- orders ------------------------------------------------------------

    def create_order(
        self,
        *,
        asset_id: str,
        order_number: str,
        order_target: OrderTarget | str,
        amount_cents: int,
        service_period: DurationRule,
        gift: Optional[DurationRule] = None,
        is_need_profit_sharing: bool = False,
        refund_order_number: Optional[str] = None,
    ) -> AssetServicePeriodOrder:
        number = str(order_number or "").strip()
        if not number:
            raise SubscriptionStateError("order_number is required")
        existing = self.get_order_by_order_number(number)
        if existing is not None:
            return existing
        target = order_target.value if isinstance(order_target, OrderTarget) else str(order_target)
        order = AssetServicePeriodOrder(
            asset_id=asset_id,
            order_number=number,
            order_target=target,
            amount_cents=int(amount_cents),
            service_period=int(service_period.duration),
            service_period_time_unit=str(service_period.time_unit),
            gift_duration=int(gift.duration) if gift is not None else None,
            gift_time_unit=str(gift.time_unit) if gift is not None else None,
            is_need_profit_sharing=bool(is_need_profit_sharing),
            refund_order_number=refund_order_number,
        )
        self.session.add(order)
        self.session.flush()
        return order

    def get_order(self, order_id: str) -> Optional[AssetServicePeriodOrder]:
        return self.session.get(AssetServicePeriodOrder, order_id)

    def get_order_by_order_number(self, order_number: str) -> Optional[AssetServicePeriodOrder]:
        return self.session.scalar(
            select(AssetServicePeriodOrder).where(AssetServicePeriodOrder.order_number == order_number)
        )

    def get_order_by_refund_order_number(self, refund_order_number: str) -> Optional[AssetServicePeriodOrder]:
        key = str(refund_order_number or "").strip()
        if not key:
            return None
        return self.session.scalar(
            select(AssetServicePeriodOrder).where(AssetServicePeriodOrder.refund_order_number == key)
        )

    def request_order_refund(
        self,
        order_id: str,
        *,
        refund_order_number: str,
        now: Optional[datetime] = None,
    ) -> AssetServicePeriodOrder:
        order = self.get_order(order_id)
        if order is None:
            raise SubscriptionStateError(f"order not found: {order_id}")
        if order.paid_at is None:
            raise SubscriptionStateError(f"order {order_id} is not paid")
        if order.refund_apply_at is not None:
            return order
        order.refund_apply_at = _now_or(now)
        order.refund_order_number = refund_order_number
        self.session.flush()
        return order

    def mark_order_paid(
        self,
        order_id: str,
        *,
        paid_amount_cents: int,
        paid_at: datetime,
        external_order_number: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Set payment fields once. Returns False when another call already processed the order."""
        current = _now_or(now)
        result = self.session.execute(
            update(AssetServicePeriodOrder)
            .where(
                AssetServicePeriodOrder.id == order_id,
                AssetServicePeriodOrder.processed_at.is_(None),
            )
            .values(
                paid_amount_cents=int(paid_amount_cents),
                paid_at=as_utc_aware(paid_at),
                external_order_number=external_order_number,
                processed_at=current,
                updated_at=current,
            )
        )
        return int(result.rowcount or 0) == 1

    def mark_order_refunded(
        self,
        order_id: str,
        *,
        refunded_amount_cents: int,
        refunded_at: datetime,
    ) -> bool:
        result = self.session.execute(
            update(AssetServicePeriodOrder)
            .where(
                AssetServicePeriodOrder.id == order_id,
                AssetServicePeriodOrder.refunded_at.is_(None),
            )
            .values(
                refunded_amount_cents=int(refunded_amount_cents),
                refunded_at=as_utc_aware(refunded_at),
                updated_at=utc_now(),
            )
        )
        return int(result.rowcount or 0) == 1

    # -- coupons -----------------------------------------------------------

    def create_coupon(self, *, activity: str, user_id: Optional[str] = None, discount_cents: int = 0) -> Coupon:
        coupon = Coupon(activity=str(activity).strip().lower(), user_id=user_id, discount_cents=int(discount_cents))
        self.session.add(coupon)
        self.session.flush()
        return coupon

    def get_coupon(self, coupon_id: str) -> Optional[Coupon]:
        return self.session.get(Coupon, coupon_id)

    def claim_coupon(
        self,
        coupon_id: str,
        *,
        activity: str,
        order_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Mark an unused coupon of `activity` as used by `order_id`; False when none matched."""
        result = self.session.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                Coupon.activity == activity,
                Coupon.used_at.is_(None),
            )
            .values(used_at=_now_or(now), order_id=order_id)
        )
        return int(result.rowcount or 0) == 1
