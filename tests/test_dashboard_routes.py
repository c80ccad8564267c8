from __future__ import annotations

from typing import Sequence

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from api.app.routes import branches as branch_routes
from api.app.routes import credentials as credential_routes
from api.app.routes import devices as device_routes
from api.app.routes import notification_settings as settings_routes
from api.app.routes import stats as stats_routes
from api.app.schemas import (
    BranchCreateWithDevicesIn,
    BranchIn,
    BranchUpdate,
    CredentialsIn,
    DeviceBranchUpdate,
    NotificationSettingsIn,
    SyncDevicesIn,
)
from api.app.services.vendor_gateway import VendorDevice, VendorError
from api.app.storage.memory import MemoryStorage


class _FakeGateway:
    def __init__(self, devices: Sequence[VendorDevice] = (), error: VendorError | None = None) -> None:
        self.devices = list(devices)
        self.error = error
        self.session = None
        self.session_refreshed = False
        self.last_error: VendorError | None = None

    def fetch_devices_by_serials(self, serials):
        self.last_error = self.error
        if self.error is not None:
            return []
        wanted = set(serials)
        return [d for d in self.devices if d.serial in wanted]


def _factory(gateway: _FakeGateway):
    return lambda creds: gateway


def _sync(storage: MemoryStorage, branch_id: str, gateway: _FakeGateway, serials: Sequence[str] = ("SN1",)):
    return branch_routes.sync_branch_devices(
        branch_id,
        SyncDevicesIn(serials=list(serials)),
        storage=storage,
        gateway_factory=_factory(gateway),
        notifier=None,
    )


def _error(exc: HTTPException) -> dict:
    assert isinstance(exc.detail, dict)
    return exc.detail["error"]


def _seeded_storage() -> MemoryStorage:
    storage = MemoryStorage()
    credential_routes.save_credentials(CredentialsIn(username="ops", password="secret"), storage=storage)
    return storage


PORTAL = [
    VendorDevice(external_id="d1", name="Gate", serial="SN1", online_flag=1),
    VendorDevice(external_id="d2", name="Vault", serial="SN2", online_flag=0),
]


def test_credentials_round_trip_hides_secrets() -> None:
    storage = MemoryStorage()

    with pytest.raises(HTTPException) as exc:
        credential_routes.get_credentials(storage=storage)
    assert exc.value.status_code == 404

    credential_routes.save_credentials(
        CredentialsIn(username="ops", password="secret", auth_mode="api_key", api_key="k", api_secret="s"),
        storage=storage,
    )
    out = credential_routes.get_credentials(storage=storage)

    body = out.model_dump(by_alias=True)
    assert body["username"] == "ops"
    assert body["authMode"] == "api_key"
    assert body["apiKey"] == "k"
    assert "password" not in body
    assert "apiSecret" not in body
    assert "sessionToken" not in body


def test_credentials_api_key_mode_requires_key_and_secret() -> None:
    with pytest.raises(ValidationError):
        CredentialsIn(username="ops", password="pw", auth_mode="api_key", api_key="k")


def test_credentials_accept_camel_case_body() -> None:
    req = CredentialsIn.model_validate(
        {"username": "ops", "password": "pw", "authMode": "api_key", "apiKey": "k", "apiSecret": "s"}
    )
    assert req.api_secret == "s"


def test_legacy_sync_is_rejected_with_hint() -> None:
    with pytest.raises(HTTPException) as exc:
        credential_routes.legacy_sync()

    assert exc.value.status_code == 400
    err = _error(exc.value)
    assert "hint" in err
    assert "sync-devices" in err["hint"]


def test_branch_crud_routes() -> None:
    storage = MemoryStorage()

    created = branch_routes.create_branch(
        BranchIn(name="Central", email="c@example.com", state="Kerala"), storage=storage
    )
    assert branch_routes.get_branch(created.id, storage=storage).name == "Central"

    updated = branch_routes.update_branch(created.id, BranchUpdate(state="Goa"), storage=storage)
    assert updated.state == "Goa"
    assert updated.email == "c@example.com"

    assert [b.id for b in branch_routes.list_branches(storage=storage)] == [created.id]
    assert branch_routes.delete_branch(created.id, storage=storage).success is True

    for call in (
        lambda: branch_routes.get_branch(created.id, storage=storage),
        lambda: branch_routes.update_branch(created.id, BranchUpdate(name="x"), storage=storage),
        lambda: branch_routes.delete_branch(created.id, storage=storage),
    ):
        with pytest.raises(HTTPException) as exc:
            call()
        assert exc.value.status_code == 404


def test_branch_fields_must_be_present() -> None:
    with pytest.raises(ValidationError):
        BranchIn(name="  ", email="c@example.com", state="Kerala")


def test_create_with_devices_requires_credentials() -> None:
    storage = MemoryStorage()

    with pytest.raises(HTTPException) as exc:
        branch_routes.create_branch_with_devices(
            BranchCreateWithDevicesIn(name="B", email="b@example.com", state="S", serials=["SN1"]),
            storage=storage,
            gateway_factory=_factory(_FakeGateway(PORTAL)),
            notifier=None,
        )

    assert exc.value.status_code == 400
    assert _error(exc.value)["message"] == "No credentials configured"
    assert storage.list_branches() == []


def test_create_with_devices_syncs_serials_into_new_branch() -> None:
    storage = _seeded_storage()

    out = branch_routes.create_branch_with_devices(
        BranchCreateWithDevicesIn(name="B", email="b@example.com", state="S", serials=["SN1", "SN2", "SN1", " "]),
        storage=storage,
        gateway_factory=_factory(_FakeGateway(PORTAL)),
        notifier=None,
    )

    assert out.devices_synced == 2
    assert out.vendor_error is None
    devices = storage.list_devices()
    assert {d.branch_id for d in devices} == {out.branch.id}
    assert {d.external_device_id: d.status for d in devices} == {"d1": "online", "d2": "offline"}


def test_create_with_devices_keeps_branch_when_portal_fails() -> None:
    storage = _seeded_storage()
    gateway = _FakeGateway(error=VendorError(kind="vendor_unavailable", message="device lookup timed out"))

    out = branch_routes.create_branch_with_devices(
        BranchCreateWithDevicesIn(name="B", email="b@example.com", state="S", serials=["SN1"]),
        storage=storage,
        gateway_factory=_factory(gateway),
        notifier=None,
    )

    assert out.devices_synced == 0
    assert out.vendor_error == "device lookup timed out"
    assert [b.id for b in storage.list_branches()] == [out.branch.id]


def test_sync_devices_error_mapping() -> None:
    storage = MemoryStorage()
    branch = storage.create_branch({"name": "B", "email": "b@example.com", "state": "S"})

    with pytest.raises(HTTPException) as exc:
        _sync(storage, "missing", _FakeGateway())
    assert exc.value.status_code == 404

    with pytest.raises(HTTPException) as exc:
        _sync(storage, branch.id, _FakeGateway())
    assert exc.value.status_code == 400

    storage.save_credentials({"username": "ops", "password": "pw"})
    failing = _FakeGateway(error=VendorError(kind="authentication_failed", message="login rejected (HTTP 401)"))
    with pytest.raises(HTTPException) as exc:
        _sync(storage, branch.id, failing)
    assert exc.value.status_code == 502
    assert _error(exc.value)["code"] == "VENDOR_AUTH_FAILED"

    with pytest.raises(HTTPException) as exc:
        _sync(storage, branch.id, _FakeGateway(PORTAL), serials=[" "])
    assert exc.value.status_code == 400


def test_sync_devices_success() -> None:
    storage = _seeded_storage()
    branch = storage.create_branch({"name": "B", "email": "b@example.com", "state": "S"})

    out = _sync(storage, branch.id, _FakeGateway(PORTAL), serials=["SN2"])

    assert out.success is True
    assert out.devices_synced == 1
    assert storage.list_devices()[0].branch_id == branch.id


def test_device_routes() -> None:
    storage = _seeded_storage()
    branch = storage.create_branch({"name": "B", "email": "b@example.com", "state": "S"})
    device = storage.create_device({"external_device_id": "d1", "name": "Gate", "serial": "SN1", "status": "online"})
    storage.add_status_history(device.id, "online")

    listed = device_routes.list_devices(storage=storage)
    assert [d.id for d in listed] == [device.id]
    assert listed[0].model_dump(by_alias=True)["externalDeviceId"] == "d1"

    history = device_routes.get_device_history(device.id, limit=50, storage=storage)
    assert [h.status for h in history] == ["online"]

    moved = device_routes.update_device_branch(device.id, DeviceBranchUpdate(branch_id=branch.id), storage=storage)
    assert moved.branch_id == branch.id
    cleared = device_routes.update_device_branch(device.id, DeviceBranchUpdate(branch_id=None), storage=storage)
    assert cleared.branch_id is None

    with pytest.raises(HTTPException) as exc:
        device_routes.update_device_branch(device.id, DeviceBranchUpdate(branch_id="nope"), storage=storage)
    assert exc.value.status_code == 404

    assert device_routes.delete_device(device.id, storage=storage).success is True
    for call in (
        lambda: device_routes.delete_device(device.id, storage=storage),
        lambda: device_routes.get_device_history(device.id, limit=50, storage=storage),
    ):
        with pytest.raises(HTTPException) as exc:
            call()
        assert exc.value.status_code == 404


def test_check_status_route() -> None:
    storage = MemoryStorage()
    with pytest.raises(HTTPException) as exc:
        device_routes.check_status(storage=storage, gateway_factory=_factory(_FakeGateway()), notifier=None)
    assert exc.value.status_code == 400

    storage = _seeded_storage()
    storage.create_device({"external_device_id": "d1", "name": "Gate", "serial": "SN1", "status": "offline"})
    storage.create_device({"external_device_id": "d2", "name": "Vault", "serial": "SN2", "status": "offline"})

    out = device_routes.check_status(storage=storage, gateway_factory=_factory(_FakeGateway(PORTAL)), notifier=None)

    assert out.model_dump(by_alias=True) == {"success": True, "checked": 2, "statusChanges": 1}

    failing = _FakeGateway(error=VendorError(kind="vendor_unavailable", message="timed out"))
    with pytest.raises(HTTPException) as exc:
        device_routes.check_status(storage=storage, gateway_factory=_factory(failing), notifier=None)
    assert exc.value.status_code == 502
    assert _error(exc.value)["code"] == "VENDOR_UNAVAILABLE"
    assert sorted(d.status for d in storage.list_devices()) == ["offline", "online"]

    rejected = _FakeGateway(error=VendorError(kind="authentication_failed", message="login rejected (HTTP 401)"))
    with pytest.raises(HTTPException) as exc:
        device_routes.check_status(storage=storage, gateway_factory=_factory(rejected), notifier=None)
    assert exc.value.status_code == 502
    assert _error(exc.value)["code"] == "VENDOR_AUTH_FAILED"


def test_notification_settings_routes() -> None:
    storage = MemoryStorage()
    assert settings_routes.get_notification_settings(storage=storage) is None

    saved = settings_routes.save_notification_settings(
        NotificationSettingsIn.model_validate({"email": "ops@example.com", "threshold": 4, "onlineAlert": True}),
        storage=storage,
    )

    assert saved.threshold == 4
    assert saved.online_alert is True
    assert saved.check_interval_minutes == 15
    current = settings_routes.get_notification_settings(storage=storage)
    assert current is not None and current.id == saved.id


def test_chart_data_route() -> None:
    storage = MemoryStorage()
    storage.create_device({"external_device_id": "d1", "name": "Gate", "serial": "SN1", "status": "online"})

    out = stats_routes.get_chart_data(storage=storage)

    body = out.model_dump(by_alias=True)
    assert body["summary"] == {"total": 1, "online": 1, "offline": 0, "unknown": 0}
    assert body["stateWise"] == [{"state": "Unassigned", "online": 1, "offline": 0, "unknown": 0}]
    assert body["deviceStatus"][0] == {"name": "Online", "value": 1}
