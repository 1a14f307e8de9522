"""Initialize tracker subscription schema.

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind: sa.engine.Connection, table_name: str) -> bool:
    inspector = sa.inspect(bind)
    return table_name in set(inspector.get_table_names())


def _has_index(bind: sa.engine.Connection, table_name: str, index_name: str) -> bool:
    inspector = sa.inspect(bind)
    if table_name not in set(inspector.get_table_names()):
        return False
    return any(item.get("name") == index_name for item in inspector.get_indexes(table_name))


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


_INDEXES: list[tuple[str, str, list[str], bool]] = [
    ("sub_users", "ix_sub_users_phone", ["phone"], False),
    ("sub_tracker_models", "ix_sub_tracker_models_code", ["code"], True),
    ("sub_trackers", "ix_sub_trackers_tracker_number", ["tracker_number"], True),
    ("sub_trackers", "ix_sub_trackers_tracker_model_id", ["tracker_model_id"], False),
    ("sub_assets", "ix_sub_assets_tracker_id", ["tracker_id"], True),
    ("sub_assets", "ix_sub_assets_user_id", ["user_id"], False),
    ("sub_assets", "ix_sub_assets_merchant_id", ["merchant_id"], False),
    ("sub_device_packages", "ix_sub_device_packages_merchant_id", ["merchant_id"], False),
    ("sub_device_packages", "ix_sub_device_packages_merchant_open", ["merchant_id", "is_related_open"], False),
    ("sub_device_package_models", "ix_sub_device_package_models_package_id", ["package_id"], False),
    ("sub_device_package_models", "ix_sub_device_package_models_tracker_model_id", ["tracker_model_id"], False),
    ("sub_device_bind_rules", "ix_sub_device_bind_rules_package_id", ["package_id"], True),
    ("sub_device_recharge_rules", "ix_sub_device_recharge_rules_package_id", ["package_id"], False),
    ("sub_profit_sharing_rules", "ix_sub_profit_sharing_rules_recharge_rule_id", ["recharge_rule_id"], False),
    ("sub_asset_orders", "ix_sub_asset_orders_order_number", ["order_number"], True),
    ("sub_asset_orders", "ix_sub_asset_orders_asset_id", ["asset_id"], False),
    ("sub_asset_orders", "ix_sub_asset_orders_external_order_number", ["external_order_number"], False),
    ("sub_asset_orders", "ix_sub_asset_orders_refund_order_number", ["refund_order_number"], True),
    ("sub_asset_orders", "ix_sub_asset_orders_asset_target", ["asset_id", "order_target"], False),
    ("sub_coupons", "ix_sub_coupons_user_id", ["user_id"], False),
    ("sub_coupons", "ix_sub_coupons_activity", ["activity"], False),
    ("sub_coupons", "ix_sub_coupons_order_id", ["order_id"], False),
    ("sub_coupons", "ix_sub_coupons_activity_used", ["activity", "used_at"], False),
    ("sub_asset_notification_configs", "ix_sub_asset_notification_configs_asset_id", ["asset_id"], False),
]


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "sub_users"):
        op.create_table(
            "sub_users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("nickname", sa.String(length=120), nullable=True),
            sa.Column("phone", sa.String(length=32), nullable=True),
            _ts("created_at", nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_tracker_models"):
        op.create_table(
            "sub_tracker_models",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            _ts("created_at", nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_trackers"):
        op.create_table(
            "sub_trackers",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tracker_number", sa.String(length=64), nullable=False),
            sa.Column("tracker_model_id", sa.String(length=36), nullable=False),
            _ts("silent_period_end_time"),
            _ts("created_at", nullable=False),
            sa.ForeignKeyConstraint(["tracker_model_id"], ["sub_tracker_models.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_assets"):
        op.create_table(
            "sub_assets",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tracker_id", sa.String(length=36), nullable=True),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("merchant_id", sa.String(length=36), nullable=True),
            _ts("service_start_time"),
            _ts("service_end_time"),
            _ts("tracker_bound_at"),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
            sa.ForeignKeyConstraint(["tracker_id"], ["sub_trackers.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["sub_users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_device_packages"):
        op.create_table(
            "sub_device_packages",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("merchant_id", sa.String(length=36), nullable=True),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("is_related_open", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            _ts("created_at", nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_device_package_models"):
        op.create_table(
            "sub_device_package_models",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("package_id", sa.String(length=36), nullable=False),
            sa.Column("tracker_model_id", sa.String(length=36), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.ForeignKeyConstraint(["package_id"], ["sub_device_packages.id"]),
            sa.ForeignKeyConstraint(["tracker_model_id"], ["sub_tracker_models.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("package_id", "tracker_model_id", name="uq_sub_package_model"),
        )

    if not _table_exists(bind, "sub_device_bind_rules"):
        op.create_table(
            "sub_device_bind_rules",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("package_id", sa.String(length=36), nullable=False),
            sa.Column("charge_duration", sa.Integer(), nullable=False),
            sa.Column("charge_time_unit", sa.String(length=16), nullable=False),
            sa.ForeignKeyConstraint(["package_id"], ["sub_device_packages.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_device_recharge_rules"):
        op.create_table(
            "sub_device_recharge_rules",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("package_id", sa.String(length=36), nullable=False),
            sa.Column("charge_duration", sa.Integer(), nullable=False),
            sa.Column("charge_time_unit", sa.String(length=16), nullable=False),
            sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("is_opening_rule", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.ForeignKeyConstraint(["package_id"], ["sub_device_packages.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_profit_sharing_rules"):
        op.create_table(
            "sub_profit_sharing_rules",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("recharge_rule_id", sa.String(length=36), nullable=False),
            sa.Column("receiver_id", sa.String(length=64), nullable=False),
            sa.Column("ratio_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.ForeignKeyConstraint(["recharge_rule_id"], ["sub_device_recharge_rules.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_asset_orders"):
        op.create_table(
            "sub_asset_orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("order_number", sa.String(length=64), nullable=False),
            sa.Column("asset_id", sa.String(length=36), nullable=False),
            sa.Column("order_target", sa.String(length=16), nullable=False),
            sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("external_order_number", sa.String(length=128), nullable=True),
            sa.Column("paid_amount_cents", sa.Integer(), nullable=True),
            _ts("paid_at"),
            _ts("processed_at"),
            sa.Column("refund_order_number", sa.String(length=64), nullable=True),
            _ts("refund_apply_at"),
            sa.Column("refunded_amount_cents", sa.Integer(), nullable=True),
            _ts("refunded_at"),
            sa.Column("service_period", sa.Integer(), nullable=False),
            sa.Column("service_period_time_unit", sa.String(length=16), nullable=False),
            sa.Column("gift_duration", sa.Integer(), nullable=True),
            sa.Column("gift_time_unit", sa.String(length=16), nullable=True),
            sa.Column("is_need_profit_sharing", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
            sa.ForeignKeyConstraint(["asset_id"], ["sub_assets.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_coupons"):
        op.create_table(
            "sub_coupons",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("activity", sa.String(length=64), nullable=False),
            sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
            _ts("used_at"),
            sa.Column("order_id", sa.String(length=36), nullable=True),
            _ts("created_at", nullable=False),
            sa.ForeignKeyConstraint(["order_id"], ["sub_asset_orders.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(bind, "sub_asset_notification_configs"):
        op.create_table(
            "sub_asset_notification_configs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("asset_id", sa.String(length=36), nullable=False),
            sa.Column("kind", sa.String(length=32), nullable=False),
            sa.Column("app_notification", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("sms_notification", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("phone_notification", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("wechat_notification", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("phone_alarm_start_time", sa.String(length=5), nullable=False),
            sa.Column("phone_alarm_end_time", sa.String(length=5), nullable=False),
            sa.Column("sms_alarm_start_time", sa.String(length=5), nullable=False),
            sa.Column("sms_alarm_end_time", sa.String(length=5), nullable=False),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.Column("updated_by", sa.String(length=64), nullable=True),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
            sa.ForeignKeyConstraint(["asset_id"], ["sub_assets.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("asset_id", "kind", name="uq_sub_notification_asset_kind"),
        )

    for table_name, index_name, columns, unique in _INDEXES:
        if not _has_index(bind, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=unique)


def downgrade() -> None:
    bind = op.get_bind()

    for table_name, index_name, _columns, _unique in reversed(_INDEXES):
        if _has_index(bind, table_name, index_name):
            op.drop_index(index_name, table_name=table_name)

    for table_name in [
        "sub_asset_notification_configs",
        "sub_coupons",
        "sub_asset_orders",
        "sub_profit_sharing_rules",
        "sub_device_recharge_rules",
        "sub_device_bind_rules",
        "sub_device_package_models",
        "sub_device_packages",
        "sub_assets",
        "sub_trackers",
        "sub_tracker_models",
        "sub_users",
    ]:
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
