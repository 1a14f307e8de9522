from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class OrderTarget(str, enum.Enum):
    ACTIVATE = "activate"
    RENEWAL = "renewal"


class AssetOrderStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"


class TimeUnit(str, enum.Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class AlarmType(str, enum.Enum):
    """Alarm kinds a tracker can raise; one notification config is created per member."""

    OVERSPEED = "overspeed"
    VIBRATION = "vibration"
    LOW_BATTERY = "low_battery"
    POWER_CUT = "power_cut"
    FENCE_IN = "fence_in"
    FENCE_OUT = "fence_out"
    DISPLACEMENT = "displacement"
    OFFLINE = "offline"


class AppUser(Base):
    __tablename__ = "sub_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    nickname: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    assets: Mapped[list["Asset"]] = relationship(back_populates="user")


class TrackerModel(Base):
    __tablename__ = "sub_tracker_models"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Tracker(Base):
    __tablename__ = "sub_trackers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tracker_number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    tracker_model_id: Mapped[str] = mapped_column(ForeignKey("sub_tracker_models.id"), index=True)
    silent_period_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    tracker_model: Mapped[TrackerModel] = relationship()
    asset: Mapped[Optional["Asset"]] = relationship(back_populates="tracker", uselist=False)


class Asset(Base):
    __tablename__ = "sub_assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tracker_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("sub_trackers.id"), nullable=True, unique=True, index=True
    )
    user_id: Mapped[Optional[str]] = mapped_column(ForeignKey("sub_users.id"), nullable=True, index=True)
    merchant_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    service_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # NULL until the asset is activated for the first time.
    service_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    tracker_bound_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    tracker: Mapped[Optional[Tracker]] = relationship(back_populates="asset")
    user: Mapped[Optional[AppUser]] = relationship(back_populates="assets")
    notification_configs: Mapped[list["AssetNotificationConfig"]] = relationship(back_populates="asset")
    orders: Mapped[list["AssetServicePeriodOrder"]] = relationship(back_populates="asset")


class DevicePackage(Base):
    __tablename__ = "sub_device_packages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    # NULL means a platform-wide package.
    merchant_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    is_related_open: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    bind_rule: Mapped[Optional["DeviceBindRule"]] = relationship(back_populates="package", uselist=False)
    recharge_rules: Mapped[list["DeviceRechargeRule"]] = relationship(
        back_populates="package",
        order_by="DeviceRechargeRule.position",
    )
    model_links: Mapped[list["DevicePackageModel"]] = relationship(
        back_populates="package",
        order_by="DevicePackageModel.position",
    )

    @property
    def tracker_model_ids(self) -> list[str]:
        return [link.tracker_model_id for link in self.model_links]


class DevicePackageModel(Base):
    __tablename__ = "sub_device_package_models"
    __table_args__ = (UniqueConstraint("package_id", "tracker_model_id", name="uq_sub_package_model"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    package_id: Mapped[str] = mapped_column(ForeignKey("sub_device_packages.id"), index=True)
    tracker_model_id: Mapped[str] = mapped_column(ForeignKey("sub_tracker_models.id"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)

    package: Mapped[DevicePackage] = relationship(back_populates="model_links")
    tracker_model: Mapped[TrackerModel] = relationship()


class DeviceBindRule(Base):
    __tablename__ = "sub_device_bind_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    package_id: Mapped[str] = mapped_column(ForeignKey("sub_device_packages.id"), unique=True, index=True)
    charge_duration: Mapped[int] = mapped_column(Integer)
    charge_time_unit: Mapped[str] = mapped_column(String(16))

    package: Mapped[DevicePackage] = relationship(back_populates="bind_rule")


class DeviceRechargeRule(Base):
    __tablename__ = "sub_device_recharge_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    package_id: Mapped[str] = mapped_column(ForeignKey("sub_device_packages.id"), index=True)
    charge_duration: Mapped[int] = mapped_column(Integer)
    charge_time_unit: Mapped[str] = mapped_column(String(16))
    price_cents: Mapped[int] = mapped_column(Integer, default=0)
    is_opening_rule: Mapped[bool] = mapped_column(Boolean, default=False)
    position: Mapped[int] = mapped_column(Integer, default=0)

    package: Mapped[DevicePackage] = relationship(back_populates="recharge_rules")
    profit_sharing_rules: Mapped[list["ProfitSharingRule"]] = relationship(back_populates="recharge_rule")


class ProfitSharingRule(Base):
    __tablename__ = "sub_profit_sharing_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    recharge_rule_id: Mapped[str] = mapped_column(ForeignKey("sub_device_recharge_rules.id"), index=True)
    receiver_id: Mapped[str] = mapped_column(String(64))
    # Basis points of the paid amount (10000 = 100%).
    ratio_bps: Mapped[int] = mapped_column(Integer, default=0)

    recharge_rule: Mapped[DeviceRechargeRule] = relationship(back_populates="profit_sharing_rules")


class AssetServicePeriodOrder(Base):
    __tablename__ = "sub_asset_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    asset_id: Mapped[str] = mapped_column(ForeignKey("sub_assets.id"), index=True)
    order_target: Mapped[str] = mapped_column(String(16))
    amount_cents: Mapped[int] = mapped_column(Integer, default=0)
    external_order_number: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    paid_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Write-once: set by the first successful payment settlement.
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_order_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True, index=True)
    refund_apply_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Write-once: set by the first successful refund settlement.
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    service_period: Mapped[int] = mapped_column(Integer)
    service_period_time_unit: Mapped[str] = mapped_column(String(16))
    gift_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gift_time_unit: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    is_need_profit_sharing: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    asset: Mapped[Asset] = relationship(back_populates="orders")


class Coupon(Base):
    __tablename__ = "sub_coupons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    activity: Mapped[str] = mapped_column(String(64), index=True)
    discount_cents: Mapped[int] = mapped_column(Integer, default=0)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    order_id: Mapped[Optional[str]] = mapped_column(ForeignKey("sub_asset_orders.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class AssetNotificationConfig(Base):
    __tablename__ = "sub_asset_notification_configs"
    __table_args__ = (UniqueConstraint("asset_id", "kind", name="uq_sub_notification_asset_kind"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    asset_id: Mapped[str] = mapped_column(ForeignKey("sub_assets.id"), index=True)
    kind: Mapped[AlarmType] = mapped_column(Enum(AlarmType, native_enum=False, length=32))
    app_notification: Mapped[bool] = mapped_column(Boolean, default=False)
    sms_notification: Mapped[bool] = mapped_column(Boolean, default=False)
    phone_notification: Mapped[bool] = mapped_column(Boolean, default=False)
    wechat_notification: Mapped[bool] = mapped_column(Boolean, default=False)
    phone_alarm_start_time: Mapped[str] = mapped_column(String(5), default="00:00")
    phone_alarm_end_time: Mapped[str] = mapped_column(String(5), default="23:59")
    sms_alarm_start_time: Mapped[str] = mapped_column(String(5), default="00:00")
    sms_alarm_end_time: Mapped[str] = mapped_column(String(5), default="23:59")
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    asset: Mapped[Asset] = relationship(back_populates="notification_configs")


Index("ix_sub_device_packages_merchant_open", DevicePackage.merchant_id, DevicePackage.is_related_open)
Index("ix_sub_asset_orders_asset_target", AssetServicePeriodOrder.asset_id, AssetServicePeriodOrder.order_target)
Index("ix_sub_coupons_activity_used", Coupon.activity, Coupon.used_at)
