from __future__ import annotations

import json
from pathlib import Path

import pytest

import subscription.integrations as integrations
from subscription import (
    DurationRule,
    OrderTarget,
    SubscriptionRepository,
    build_session_factory,
    session_scope,
)
from subscription.cli import run


def _last_json_line(capsys) -> dict:
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    return json.loads(lines[-1])


def _seed(database_url: str) -> str:
    engine, session_factory = build_session_factory(database_url)
    with session_scope(session_factory) as session:
        repo = SubscriptionRepository(session)
        model = repo.create_tracker_model("GT06")
        repo.create_device_package(
            name="platform monthly",
            tracker_model_ids=[model.id],
            recharge_rules=[{"duration": 1, "time_unit": "month", "is_opening_rule": True}],
        )
        tracker = repo.create_tracker(tracker_number="T-CLI", tracker_model_id=model.id)
        user = repo.create_user(nickname="dana")
        repo.create_order(
            asset_id=tracker.asset.id,
            order_number="A-CLI",
            order_target=OrderTarget.ACTIVATE,
            amount_cents=990,
            service_period=DurationRule(duration=1, time_unit="month"),
        )
        user_id = user.id
    engine.dispose()
    return user_id


def test_cli_commands_print_json_results(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(integrations, "REDIS_DISABLED", True)
    database_url = f"sqlite:///{tmp_path / 'cli.db'}"

    assert run(["--database-url", database_url, "init-db"]) == 0
    assert _last_json_line(capsys) == {"status": "initialized"}
    user_id = _seed(database_url)

    assert (
        run(
            [
                "--database-url",
                database_url,
                "bind",
                "--account-id",
                "op-1",
                "--user-id",
                user_id,
                "T-CLI",
            ]
        )
        == 0
    )
    assert _last_json_line(capsys)["status"] == "bound"

    pay_args = [
        "--database-url",
        database_url,
        "settle-payment",
        "--order-number",
        "A-CLI",
        "--amount-cents",
        "990",
        "--transaction-id",
        "wx-cli",
        "--paid-at",
        "2024-01-05T10:00:00+08:00",
    ]
    assert run(pay_args) == 0
    assert _last_json_line(capsys)["status"] == "processed"
    assert run(pay_args) == 0
    assert _last_json_line(capsys)["status"] == "duplicate"

    missing = ["--database-url", database_url, "settle-refund", "--refund-order-number", "RF-x", "--amount-cents", "1"]
    assert run(missing) == 1
    assert _last_json_line(capsys)["status"] == "order_not_found"


def test_cli_rejects_malformed_timestamps(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        run(["settle-refund", "--refund-order-number", "RF-1", "--amount-cents", "1", "--refunded-at", "yesterday"])
    assert exc_info.value.code == 2
    assert "invalid ISO timestamp" in capsys.readouterr().err
