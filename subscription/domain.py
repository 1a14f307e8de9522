"""Value types passed between the resolver, the window calculator, settlement and binding."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Final, Literal, Optional

from .models import (
    AppUser,
    Asset,
    AssetServicePeriodOrder,
    DevicePackage,
    Tracker,
    TrackerModel,
)

DEVICE_CHANGED: Final[str] = "device-changed"

SettlementStatus = Literal["processed", "duplicate", "precondition_failed", "invalid"]
BindingStatus = Literal["bound", "precondition_failed"]


class SubscriptionError(RuntimeError):
    pass


@dataclass(frozen=True)
class DurationRule:
    """A `(duration, time_unit)` pair, e.g. an opening charge or a gift period."""

    duration: int
    time_unit: str


@dataclass(frozen=True)
class ServiceWindow:
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class TrackerPackage:
    tracker: Tracker
    package: Optional[DevicePackage]


@dataclass(frozen=True)
class DeviceBinding:
    tracker: Tracker
    package: DevicePackage
    open_rule: Optional[DurationRule]


@dataclass(frozen=True)
class DeviceServiceWindow:
    tracker: Tracker
    # None when billing is deferred to a later recharge.
    window: Optional[ServiceWindow]
    opens_on_bind: bool = False


@dataclass(frozen=True)
class TrackerRef:
    id: str
    tracker_number: str


@dataclass(frozen=True)
class ChangeEvent:
    id: str
    kind: str = DEVICE_CHANGED

    def as_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "id": self.id}


@dataclass(frozen=True)
class SideEffectResult:
    name: str
    target: str
    ok: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class SideEffectReport:
    results: tuple[SideEffectResult, ...] = ()

    @property
    def ok(self) -> bool:
        return all(item.ok for item in self.results)

    @property
    def failures(self) -> list[SideEffectResult]:
        return [item for item in self.results if not item.ok]


@dataclass(frozen=True)
class SettlementOutcome:
    status: SettlementStatus
    order_id: str
    reason: Optional[str] = None
    side_effects: SideEffectReport = field(default_factory=SideEffectReport)

    @property
    def ok(self) -> bool:
        return self.status == "processed"

    @property
    def acknowledged(self) -> bool:
        """True when the gateway callback can be acknowledged (processed or replayed)."""
        return self.status in {"processed", "duplicate"}

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "order_id": self.order_id,
            "reason": self.reason,
            "side_effect_failures": [item.name for item in self.side_effects.failures],
        }


@dataclass(frozen=True)
class BindingOutcome:
    status: BindingStatus
    asset_ids: tuple[str, ...] = ()
    reason: Optional[str] = None
    side_effects: SideEffectReport = field(default_factory=SideEffectReport)

    @property
    def ok(self) -> bool:
        return self.status == "bound"


@dataclass(frozen=True)
class OrderDeviceLookup:
    order: Optional[AssetServicePeriodOrder] = None
    asset: Optional[Asset] = None
    tracker: Optional[Tracker] = None

    @property
    def order_found(self) -> bool:
        return self.order is not None

    @property
    def device_found(self) -> bool:
        return self.asset is not None and self.tracker is not None


@dataclass(frozen=True)
class DeviceDataLookup:
    tracker: Optional[Tracker] = None
    tracker_model: Optional[TrackerModel] = None
    asset: Optional[Asset] = None
    user: Optional[AppUser] = None

    @property
    def found(self) -> bool:
        return self.asset is not None
