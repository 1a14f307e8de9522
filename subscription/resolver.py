"""Match trackers to device packages and pick the rule that opens service on bind."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Optional

from .domain import DeviceBinding, DurationRule, SubscriptionError, TrackerPackage
from .models import DevicePackage, Tracker


class PackageResolutionError(SubscriptionError):
    pass


def _tracker_merchant_id(tracker: Tracker) -> Optional[str]:
    asset = tracker.asset
    if asset is None:
        return None
    return asset.merchant_id


def _supports_model(package: DevicePackage, tracker_model_id: str) -> bool:
    return any(link.tracker_model_id == tracker_model_id for link in package.model_links)


def find_device_package_by_device(
    tracker: Tracker,
    packages: Sequence[DevicePackage],
) -> Optional[DevicePackage]:
    """
    Pick the package that applies to a tracker.

    Merchant packages win over platform packages (merchant_id is None). Within
    each pass the first match in caller order is used; no re-sorting happens.
    """

    merchant_id = _tracker_merchant_id(tracker)
    if merchant_id is not None:
        for package in packages:
            if package.merchant_id == merchant_id and _supports_model(package, tracker.tracker_model_id):
                return package

    for package in packages:
        if package.merchant_id is None and _supports_model(package, tracker.tracker_model_id):
            return package
    return None


def choose_open_rule(package: DevicePackage) -> Optional[DurationRule]:
    if package.is_related_open:
        bind_rule = package.bind_rule
        if bind_rule is None:
            return None
        return DurationRule(duration=bind_rule.charge_duration, time_unit=bind_rule.charge_time_unit)

    opening_rules = [rule for rule in package.recharge_rules if rule.is_opening_rule]
    if not opening_rules:
        return None
    # Several opening rules are tolerated; the first one is authoritative.
    first = opening_rules[0]
    return DurationRule(duration=first.charge_duration, time_unit=first.charge_time_unit)


def build_trackers_with_package_relation(
    trackers: Iterable[Tracker],
    packages: Sequence[DevicePackage],
) -> list[TrackerPackage]:
    return [
        TrackerPackage(tracker=tracker, package=find_device_package_by_device(tracker, packages))
        for tracker in trackers
    ]


def resolve_devices_for_binding(
    trackers: Iterable[Tracker],
    packages: Sequence[DevicePackage],
) -> list[DeviceBinding]:
    """
    Pair each tracker with its package and the rule that opens service on bind.

    A tracker with no package at all is a data problem and raises. A package
    without a usable open rule resolves with `open_rule=None`; the binding
    orchestrator decides whether that blocks the bind.
    """

    resolved: list[DeviceBinding] = []
    for item in build_trackers_with_package_relation(trackers, packages):
        if item.package is None:
            raise PackageResolutionError(
                f"no device package for tracker {item.tracker.tracker_number} "
                f"(model={item.tracker.tracker_model_id})"
            )
        open_rule = choose_open_rule(item.package)
        resolved.append(DeviceBinding(tracker=item.tracker, package=item.package, open_rule=open_rule))
    return resolved
