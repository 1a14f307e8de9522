from .binding import (
    NOTIFICATION_ALARM_TYPES,
    BindingOrchestrator,
    BindingPreconditionError,
    compute_service_windows,
)
from .db import (
    ENGINE,
    SessionLocal,
    build_session_factory,
    init_subscription_db,
    session_scope,
)
from .domain import (
    BindingOutcome,
    ChangeEvent,
    DeviceBinding,
    DeviceDataLookup,
    DeviceServiceWindow,
    DurationRule,
    OrderDeviceLookup,
    ServiceWindow,
    SettlementOutcome,
    SideEffectReport,
    SideEffectResult,
    SubscriptionError,
    TrackerPackage,
    TrackerRef,
)
from .integrations import (
    AlarmConfigService,
    ChangeEventPublisher,
    DeviceStatusService,
    LoggingAlarmConfigService,
    LoggingProfitSharingService,
    ProfitSharingService,
    RedisChangeEventPublisher,
    RedisDeviceStatusService,
)
from .models import (
    AlarmType,
    AppUser,
    Asset,
    AssetNotificationConfig,
    AssetOrderStatus,
    AssetServicePeriodOrder,
    Base,
    Coupon,
    DeviceBindRule,
    DevicePackage,
    DeviceRechargeRule,
    OrderTarget,
    TimeUnit,
    Tracker,
    TrackerModel,
)
from .repository import SubscriptionRepository, SubscriptionStateError
from .resolver import (
    PackageResolutionError,
    build_trackers_with_package_relation,
    choose_open_rule,
    find_device_package_by_device,
    resolve_devices_for_binding,
)
from .service_window import (
    ServiceWindowError,
    add_duration,
    calculate_service_end_time_for_renew,
    calculate_service_time_range_for_open,
)
from .settlement import SettlementService, map_order_status

__all__ = [
    "Base",
    "ENGINE",
    "SessionLocal",
    "build_session_factory",
    "init_subscription_db",
    "session_scope",
    "AppUser",
    "TrackerModel",
    "Tracker",
    "Asset",
    "DevicePackage",
    "DeviceBindRule",
    "DeviceRechargeRule",
    "AssetServicePeriodOrder",
    "Coupon",
    "AssetNotificationConfig",
    "AlarmType",
    "AssetOrderStatus",
    "OrderTarget",
    "TimeUnit",
    "DurationRule",
    "ServiceWindow",
    "TrackerPackage",
    "DeviceBinding",
    "DeviceServiceWindow",
    "TrackerRef",
    "ChangeEvent",
    "SideEffectResult",
    "SideEffectReport",
    "SettlementOutcome",
    "BindingOutcome",
    "OrderDeviceLookup",
    "DeviceDataLookup",
    "SubscriptionError",
    "SubscriptionRepository",
    "SubscriptionStateError",
    "PackageResolutionError",
    "find_device_package_by_device",
    "choose_open_rule",
    "build_trackers_with_package_relation",
    "resolve_devices_for_binding",
    "ServiceWindowError",
    "add_duration",
    "calculate_service_time_range_for_open",
    "calculate_service_end_time_for_renew",
    "SettlementService",
    "map_order_status",
    "NOTIFICATION_ALARM_TYPES",
    "BindingOrchestrator",
    "BindingPreconditionError",
    "compute_service_windows",
    "AlarmConfigService",
    "DeviceStatusService",
    "ProfitSharingService",
    "ChangeEventPublisher",
    "LoggingAlarmConfigService",
    "LoggingProfitSharingService",
    "RedisChangeEventPublisher",
    "RedisDeviceStatusService",
]
