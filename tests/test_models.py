from __future__ import annotations

from typing import Any

from api.app.models import Device, DeviceStatusHistory, NotificationSettings


def test_device_external_id_is_unique() -> None:
    # Reconciliation upserts on the portal's device id.
    table: Any = Device.__table__
    idx = {i.name: i for i in table.indexes}
    assert idx["ix_devices_external_device_id"].unique is True
    assert [c.name for c in idx["ix_devices_external_device_id"].columns] == ["external_device_id"]


def test_device_branch_id_is_not_a_foreign_key() -> None:
    # Deleting a branch must leave mapped devices in place.
    table: Any = Device.__table__
    assert not table.c.branch_id.foreign_keys
    assert table.c.branch_id.nullable is True


def test_status_history_indexed_for_newest_first_reads() -> None:
    table: Any = DeviceStatusHistory.__table__
    cols = {tuple(c.name for c in i.columns) for i in table.indexes}
    assert ("device_id", "checked_at") in cols


def test_notification_settings_column_defaults() -> None:
    table: Any = NotificationSettings.__table__
    assert table.c.threshold.default.arg == 10
    assert table.c.check_interval_minutes.default.arg == 15
    assert table.c.offline_alert.default.arg is True
    assert table.c.online_alert.default.arg is False
