from __future__ import annotations

from datetime import datetime, timezone

from subscription import (
    AlarmConfigService,
    AlarmType,
    BindingOrchestrator,
    ChangeEventPublisher,
    DeviceStatusService,
    DurationRule,
    SubscriptionRepository,
    build_session_factory,
    compute_service_windows,
    init_subscription_db,
    resolve_devices_for_binding,
    session_scope,
)
from subscription.service_window import as_utc_aware

NOW = datetime(2024, 4, 1, 8, 0, tzinfo=timezone.utc)


def make_db():
    engine, session_factory = build_session_factory("sqlite+pysqlite:///:memory:")
    init_subscription_db(engine)
    return engine, session_factory


class RecordingAlarmConfig(AlarmConfigService):
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    def refresh(self, asset_id: str) -> None:
        self.calls.append(asset_id)
        if self.fail:
            raise RuntimeError(f"alarm service rejected {asset_id}")


class RecordingDeviceStatus(DeviceStatusService):
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.batches = []

    def batch_clear_realtime_status(self, devices) -> None:
        self.batches.append(list(devices))
        if self.fail:
            raise ConnectionError("status cache unreachable")


class RecordingPublisher(ChangeEventPublisher):
    def __init__(self) -> None:
        self.batches = []

    def send(self, event) -> None:
        self.send_batch([event])

    def send_batch(self, events) -> None:
        self.batches.append([event.id for event in events])


def _orchestrator(session_factory, *, alarm=None, status=None, publisher=None) -> BindingOrchestrator:
    return BindingOrchestrator(
        alarm_config=alarm or RecordingAlarmConfig(),
        device_status=status or RecordingDeviceStatus(),
        publisher=publisher or RecordingPublisher(),
        session_factory=session_factory,
        clock=lambda: NOW,
    )


def _seed_catalog(session_factory) -> dict[str, str]:
    with session_scope(session_factory) as session:
        repo = SubscriptionRepository(session)
        opening_model = repo.create_tracker_model("GT06")
        deferred_model = repo.create_tracker_model("S5")
        broken_model = repo.create_tracker_model("X1")
        repo.create_device_package(
            name="bind and go",
            tracker_model_ids=[opening_model.id],
            merchant_id="mer-1",
            is_related_open=True,
            bind_rule=DurationRule(duration=1, time_unit="year"),
        )
        repo.create_device_package(
            name="pay to open",
            tracker_model_ids=[deferred_model.id],
            recharge_rules=[{"duration": 3, "time_unit": "month", "price_cents": 2900, "is_opening_rule": True}],
        )
        broken = repo.create_device_package(
            name="misconfigured",
            tracker_model_ids=[broken_model.id],
            is_related_open=True,
        )
        repo.create_tracker(tracker_number="T-OPEN", tracker_model_id=opening_model.id, merchant_id="mer-1")
        repo.create_tracker(tracker_number="T-OPEN-2", tracker_model_id=opening_model.id, merchant_id="mer-1")
        repo.create_tracker(tracker_number="T-DEFER", tracker_model_id=deferred_model.id, merchant_id="mer-1")
        repo.create_tracker(tracker_number="T-BROKEN", tracker_model_id=broken_model.id)
        user = repo.create_user(nickname="bob")
        return {"user_id": user.id, "broken_package_id": broken.id}


def _load(session_factory, tracker_numbers: list[str], user_id: str):
    with session_scope(session_factory) as session:
        repo = SubscriptionRepository(session)
        trackers = repo.get_trackers_with_assets(tracker_numbers)
        packages = repo.get_device_packages(["mer-1"])
        user = repo.get_user(user_id)
    return trackers, packages, user


def _asset(session_factory, tracker_number: str):
    with session_scope(session_factory) as session:
        repo = SubscriptionRepository(session)
        tracker = repo.get_trackers_with_assets([tracker_number])[0]
        configs = repo.list_notification_configs(tracker.asset.id)
        return tracker.asset, configs


def test_related_open_package_starts_service_on_bind() -> None:
    engine, session_factory = make_db()
    ids = _seed_catalog(session_factory)
    trackers, packages, user = _load(session_factory, ["T-OPEN", "T-OPEN-2"], ids["user_id"])
    alarm = RecordingAlarmConfig()
    status = RecordingDeviceStatus()
    publisher = RecordingPublisher()
    orchestrator = _orchestrator(session_factory, alarm=alarm, status=status, publisher=publisher)

    outcome = orchestrator.bind_devices_to_user("operator-1", resolve_devices_for_binding(trackers, packages), user)

    assert outcome.ok
    assert outcome.side_effects.ok
    assert list(outcome.asset_ids) == [tracker.asset.id for tracker in trackers]
    for number in ("T-OPEN", "T-OPEN-2"):
        asset, configs = _asset(session_factory, number)
        assert asset.user_id == user.id
        assert as_utc_aware(asset.service_start_time) == NOW
        assert as_utc_aware(asset.service_end_time) == datetime(2025, 4, 1, 8, 0, tzinfo=timezone.utc)
        assert sorted(item.kind for item in configs) == sorted(AlarmType)
        assert {item.created_by for item in configs} == {"operator-1"}

    assert alarm.calls == list(outcome.asset_ids)
    assert len(status.batches) == 1
    assert [ref.tracker_number for ref in status.batches[0]] == ["T-OPEN", "T-OPEN-2"]
    assert publisher.batches == [[tracker.id for tracker in trackers]]

    engine.dispose()


def test_deferred_package_binds_without_service_window() -> None:
    engine, session_factory = make_db()
    ids = _seed_catalog(session_factory)
    trackers, packages, user = _load(session_factory, ["T-DEFER"], ids["user_id"])
    devices = resolve_devices_for_binding(trackers, packages)
    assert devices[0].open_rule == DurationRule(duration=3, time_unit="month")

    windows = compute_service_windows(devices, now=NOW)
    assert windows[0].window is None
    assert windows[0].opens_on_bind is False

    outcome = _orchestrator(session_factory).bind_device_to_user("operator-1", devices[0], user)

    assert outcome.status == "bound"
    asset, configs = _asset(session_factory, "T-DEFER")
    assert asset.user_id == user.id
    assert asset.service_end_time is None
    assert len(configs) == len(AlarmType)

    engine.dispose()


def test_rebinding_an_activated_asset_keeps_paid_through_time() -> None:
    engine, session_factory = make_db()
    ids = _seed_catalog(session_factory)
    paid_through = datetime(2030, 1, 1, tzinfo=timezone.utc)
    with session_scope(session_factory) as session:
        repo = SubscriptionRepository(session)
        asset_id = repo.get_trackers_with_assets(["T-OPEN"])[0].asset.id
        repo.update_asset_service_window(asset_id, start_time=NOW, end_time=paid_through)
    trackers, packages, user = _load(session_factory, ["T-OPEN"], ids["user_id"])
    orchestrator = _orchestrator(session_factory)
    devices = resolve_devices_for_binding(trackers, packages)

    orchestrator.bind_devices_to_user("operator-1", devices, user)
    outcome = orchestrator.bind_devices_to_user("operator-2", devices, user)

    assert outcome.ok
    asset, configs = _asset(session_factory, "T-OPEN")
    assert as_utc_aware(asset.service_end_time) == paid_through
    assert len(configs) == len(AlarmType)
    assert {item.created_by for item in configs} == {"operator-2"}

    engine.dispose()


def test_batch_bind_is_atomic_when_one_device_cannot_open() -> None:
    engine, session_factory = make_db()
    ids = _seed_catalog(session_factory)
    trackers, packages, user = _load(session_factory, ["T-OPEN", "T-BROKEN"], ids["user_id"])
    devices = resolve_devices_for_binding(trackers, packages)
    assert devices[1].package.id == ids["broken_package_id"]
    assert devices[1].open_rule is None
    alarm = RecordingAlarmConfig()
    status = RecordingDeviceStatus()
    publisher = RecordingPublisher()
    orchestrator = _orchestrator(session_factory, alarm=alarm, status=status, publisher=publisher)

    outcome = orchestrator.bind_devices_to_user("operator-1", devices, user)

    assert outcome.status == "precondition_failed"
    assert "T-BROKEN" in (outcome.reason or "")
    assert outcome.asset_ids == ()
    for number in ("T-OPEN", "T-BROKEN"):
        asset, configs = _asset(session_factory, number)
        assert asset.user_id is None
        assert asset.service_end_time is None
        assert configs == []
    assert alarm.calls == []
    assert status.batches == []
    assert publisher.batches == []

    engine.dispose()


def test_side_effect_failures_are_reported_and_every_call_is_attempted() -> None:
    engine, session_factory = make_db()
    ids = _seed_catalog(session_factory)
    trackers, packages, user = _load(session_factory, ["T-OPEN", "T-OPEN-2"], ids["user_id"])
    alarm = RecordingAlarmConfig(fail=True)
    status = RecordingDeviceStatus(fail=True)
    publisher = RecordingPublisher()
    orchestrator = _orchestrator(session_factory, alarm=alarm, status=status, publisher=publisher)

    outcome = orchestrator.bind_devices_to_user("operator-1", resolve_devices_for_binding(trackers, packages), user)

    assert outcome.status == "bound"
    assert not outcome.side_effects.ok
    assert [item.name for item in outcome.side_effects.failures] == [
        "alarm_refresh",
        "alarm_refresh",
        "realtime_status_clear",
    ]
    assert len(alarm.calls) == 2
    assert len(status.batches) == 1
    assert len(publisher.batches) == 1
    asset, _configs = _asset(session_factory, "T-OPEN-2")
    assert asset.user_id == user.id

    engine.dispose()
