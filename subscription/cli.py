"""
Command-line entry point for operators and payment-callback relays.

Examples:
    trackhub-subscription init-db
    trackhub-subscription settle-payment --order-number A-1 --amount-cents 990 --transaction-id wx-1
    trackhub-subscription settle-refund --refund-order-number RF-1 --amount-cents 990
    trackhub-subscription bind --account-id op-1 --user-id u-1 T-001 T-002

Each command prints one JSON result line. The exit code is 0 when the result
can be acknowledged upstream (processed, duplicate or bound) and 1 otherwise.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from typing import Any, Optional, Sequence

from config import LOG_LEVEL
from observability import configure_json_logging

from .db import SessionFactory, build_session_factory, init_subscription_db
from .models import utc_now
from .service_window import as_utc_aware
from .tasks import (
    build_binding_orchestrator,
    build_settlement_service,
    run_bind_trackers,
    run_settle_payment,
    run_settle_refund,
)

_ACKNOWLEDGED = {"processed", "duplicate", "bound", "initialized"}


def _timestamp(value: str) -> datetime:
    try:
        return as_utc_aware(datetime.fromisoformat(value.strip()))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO timestamp: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trackhub-subscription", description="Tracker subscription engine")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL; init-db then creates tables from model metadata instead of running Alembic",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create or migrate the subscription schema")

    pay = commands.add_parser("settle-payment", help="Apply a payment-success callback")
    pay.add_argument("--order-number", required=True)
    pay.add_argument("--amount-cents", type=int, required=True)
    pay.add_argument("--transaction-id", required=True)
    pay.add_argument("--paid-at", type=_timestamp, default=None, help="ISO timestamp (default: now, UTC)")
    pay.add_argument("--attach", default=None, help="Coupon id passed through the payment attach field")

    refund = commands.add_parser("settle-refund", help="Apply a refund-success callback")
    refund.add_argument("--refund-order-number", required=True)
    refund.add_argument("--amount-cents", type=int, required=True)
    refund.add_argument("--refunded-at", type=_timestamp, default=None, help="ISO timestamp (default: now, UTC)")

    bind = commands.add_parser("bind", help="Bind trackers to a user account")
    bind.add_argument("--account-id", required=True, help="Operator account recorded on notification configs")
    bind.add_argument("--user-id", required=True)
    bind.add_argument("tracker_numbers", nargs="+")
    return parser


def run(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    engine = None
    session_factory: SessionFactory | None = None
    if args.database_url:
        engine, session_factory = build_session_factory(args.database_url)

    try:
        result = _dispatch(args, engine, session_factory)
    finally:
        if engine is not None:
            engine.dispose()

    print(json.dumps(result, ensure_ascii=False, sort_keys=True))
    return 0 if result.get("status") in _ACKNOWLEDGED else 1


def _dispatch(args: argparse.Namespace, engine: Any, session_factory: SessionFactory | None) -> dict[str, Any]:
    if args.command == "init-db":
        init_subscription_db(engine)
        return {"status": "initialized"}
    if args.command == "settle-payment":
        return run_settle_payment(
            build_settlement_service(session_factory),
            order_number=args.order_number,
            amount_cents=args.amount_cents,
            paid_at=args.paid_at or utc_now(),
            transaction_id=args.transaction_id,
            attach=args.attach,
        )
    if args.command == "settle-refund":
        return run_settle_refund(
            build_settlement_service(session_factory),
            refund_order_number=args.refund_order_number,
            amount_cents=args.amount_cents,
            refunded_at=args.refunded_at or utc_now(),
        )
    return run_bind_trackers(
        build_binding_orchestrator(session_factory),
        account_id=args.account_id,
        user_id=args.user_id,
        tracker_numbers=list(args.tracker_numbers),
        session_factory=session_factory,
    )


def main() -> int:
    configure_json_logging(level=LOG_LEVEL)
    return run(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
