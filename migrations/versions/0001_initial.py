"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _is_postgres() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def _now_default():
    if _is_postgres():
        return sa.text("now()")
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "vendor_credentials",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("username", sa.Text(), nullable=False),
        sa.Column("password", sa.Text(), nullable=False),
        sa.Column("auth_mode", sa.String(length=32), nullable=False, server_default="session_ticket"),
        sa.Column("api_key", sa.Text(), nullable=True),
        sa.Column("api_secret", sa.Text(), nullable=True),
        sa.Column("session_token", sa.Text(), nullable=True),
        sa.Column("feature_code", sa.Text(), nullable=True),
        sa.Column("customer_no", sa.Text(), nullable=True),
        sa.Column("session_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
    )

    op.create_table(
        "branches",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
    )

    op.create_table(
        "devices",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("external_device_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("serial", sa.String(length=128), nullable=False),
        sa.Column("type", sa.Text(), nullable=True),
        sa.Column("version", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="unknown"),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("branch_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
    )
    op.create_index("ix_devices_external_device_id", "devices", ["external_device_id"], unique=True)
    op.create_index("ix_devices_branch_id", "devices", ["branch_id"])

    op.create_table(
        "device_status_history",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
    )
    op.create_index("ix_status_history_device_checked", "device_status_history", ["device_id", "checked_at"])

    op.create_table(
        "notification_settings",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("threshold", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("check_interval_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")),
        sa.Column("offline_alert", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("online_alert", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
    )


def downgrade() -> None:
    op.drop_table("notification_settings")
    op.drop_index("ix_status_history_device_checked", table_name="device_status_history")
    op.drop_table("device_status_history")
    op.drop_index("ix_devices_branch_id", table_name="devices")
    op.drop_index("ix_devices_external_device_id", table_name="devices")
    op.drop_table("devices")
    op.drop_table("branches")
    op.drop_table("vendor_credentials")
