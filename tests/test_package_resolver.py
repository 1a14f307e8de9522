from __future__ import annotations

import pytest

from subscription import (
    Asset,
    DeviceBindRule,
    DevicePackage,
    DeviceRechargeRule,
    DurationRule,
    PackageResolutionError,
    Tracker,
    build_trackers_with_package_relation,
    choose_open_rule,
    find_device_package_by_device,
    resolve_devices_for_binding,
)
from subscription.models import DevicePackageModel


def _package(
    name: str,
    *,
    merchant_id: str | None,
    model_ids: list[str],
    is_related_open: bool = False,
    bind_rule: tuple[int, str] | None = None,
    recharge_rules: list[tuple[int, str, bool]] | None = None,
) -> DevicePackage:
    package = DevicePackage(id=name, name=name, merchant_id=merchant_id, is_related_open=is_related_open)
    package.model_links = [DevicePackageModel(tracker_model_id=model_id, position=i) for i, model_id in enumerate(model_ids)]
    if bind_rule is not None:
        package.bind_rule = DeviceBindRule(charge_duration=bind_rule[0], charge_time_unit=bind_rule[1])
    package.recharge_rules = [
        DeviceRechargeRule(charge_duration=duration, charge_time_unit=unit, is_opening_rule=opening, position=i)
        for i, (duration, unit, opening) in enumerate(recharge_rules or [])
    ]
    return package


def _tracker(number: str, model_id: str, merchant_id: str | None) -> Tracker:
    tracker = Tracker(id=f"id-{number}", tracker_number=number, tracker_model_id=model_id)
    tracker.asset = Asset(id=f"asset-{number}", merchant_id=merchant_id)
    return tracker


def test_merchant_package_takes_precedence_over_platform() -> None:
    platform = _package("platform", merchant_id=None, model_ids=["m1"])
    merchant = _package("merchant", merchant_id="mer-1", model_ids=["m1"])

    picked = find_device_package_by_device(_tracker("T1", "m1", "mer-1"), [platform, merchant])

    assert picked is merchant


def test_falls_back_to_platform_when_merchant_has_no_compatible_package() -> None:
    platform = _package("platform", merchant_id=None, model_ids=["m1", "m2"])
    other_model = _package("merchant-m3", merchant_id="mer-1", model_ids=["m3"])
    other_merchant = _package("mer-2", merchant_id="mer-2", model_ids=["m1"])

    picked = find_device_package_by_device(_tracker("T1", "m1", "mer-1"), [other_model, other_merchant, platform])

    assert picked is platform


def test_first_match_in_caller_order_wins_within_a_pass() -> None:
    first = _package("first", merchant_id="mer-1", model_ids=["m1"])
    second = _package("second", merchant_id="mer-1", model_ids=["m2", "m1"])

    tracker = _tracker("T1", "m1", "mer-1")
    assert find_device_package_by_device(tracker, [first, second]) is first
    assert find_device_package_by_device(tracker, [second, first]) is second


def test_tracker_without_merchant_only_sees_platform_packages() -> None:
    merchant = _package("merchant", merchant_id="mer-1", model_ids=["m1"])
    platform = _package("platform", merchant_id=None, model_ids=["m1"])

    assert find_device_package_by_device(_tracker("T1", "m1", None), [merchant, platform]) is platform
    assert find_device_package_by_device(_tracker("T2", "m1", None), [merchant]) is None


def test_choose_open_rule_uses_bind_rule_for_related_open_packages() -> None:
    package = _package(
        "p",
        merchant_id=None,
        model_ids=["m1"],
        is_related_open=True,
        bind_rule=(1, "year"),
        recharge_rules=[(3, "month", True)],
    )

    assert choose_open_rule(package) == DurationRule(duration=1, time_unit="year")


def test_choose_open_rule_related_open_without_bind_rule_returns_none() -> None:
    package = _package("p", merchant_id=None, model_ids=["m1"], is_related_open=True, recharge_rules=[(3, "month", True)])

    assert choose_open_rule(package) is None


def test_choose_open_rule_first_opening_recharge_rule_wins() -> None:
    package = _package(
        "p",
        merchant_id=None,
        model_ids=["m1"],
        recharge_rules=[(1, "month", False), (6, "month", True), (1, "year", True)],
    )

    assert choose_open_rule(package) == DurationRule(duration=6, time_unit="month")


def test_choose_open_rule_without_opening_rule_returns_none() -> None:
    package = _package("p", merchant_id=None, model_ids=["m1"], recharge_rules=[(1, "month", False)])

    assert choose_open_rule(package) is None


def test_build_trackers_with_package_relation_keeps_unmatched_trackers() -> None:
    platform = _package("platform", merchant_id=None, model_ids=["m1"])
    matched = _tracker("T1", "m1", "mer-1")
    unmatched = _tracker("T2", "m9", "mer-1")

    relation = build_trackers_with_package_relation([matched, unmatched], [platform])

    assert [item.tracker for item in relation] == [matched, unmatched]
    assert relation[0].package is platform
    assert relation[1].package is None


def test_resolve_devices_for_binding_pairs_package_and_open_rule() -> None:
    package = _package("p", merchant_id=None, model_ids=["m1"], is_related_open=True, bind_rule=(30, "day"))
    tracker = _tracker("T1", "m1", None)

    devices = resolve_devices_for_binding([tracker], [package])

    assert len(devices) == 1
    assert devices[0].tracker is tracker
    assert devices[0].package is package
    assert devices[0].open_rule == DurationRule(duration=30, time_unit="day")


def test_resolve_devices_for_binding_rejects_missing_package() -> None:
    with pytest.raises(PackageResolutionError, match="T1"):
        resolve_devices_for_binding([_tracker("T1", "m1", None)], [])


def test_resolve_devices_for_binding_leaves_missing_open_rule_to_the_binder() -> None:
    related_open = _package("open", merchant_id=None, model_ids=["m1"], is_related_open=True)
    deferred = _package("deferred", merchant_id=None, model_ids=["m2"], recharge_rules=[(1, "month", False)])

    devices = resolve_devices_for_binding([_tracker("T1", "m1", None), _tracker("T2", "m2", None)], [related_open, deferred])

    assert [device.package for device in devices] == [related_open, deferred]
    assert [device.open_rule for device in devices] == [None, None]
