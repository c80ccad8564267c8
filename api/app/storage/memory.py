from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Mapping

from ..errors import NotFoundError, StorageFailure
from ..models import (
    Branch,
    Device,
    DeviceStatusHistory,
    NotificationSettings,
    VendorCredentials,
    new_id,
    utcnow,
)
from ..services.vendor_gateway import SessionInfo
from .base import (
    BRANCH_MUTABLE_FIELDS,
    DEFAULT_HISTORY_LIMIT,
    DEVICE_MUTABLE_FIELDS,
    Storage,
    filter_patch,
)


class MemoryStorage(Storage):
    """Process-local store used when no DATABASE_URL is configured.

    Rows are transient ORM instances held in dicts; nothing survives a restart.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._credentials: VendorCredentials | None = None
        self._branches: dict[str, Branch] = {}
        self._devices: dict[str, Device] = {}
        self._history: list[DeviceStatusHistory] = []
        self._notification_settings: NotificationSettings | None = None

    # --- Vendor credentials ---

    def get_credentials(self) -> VendorCredentials | None:
        with self._lock:
            return self._credentials

    def save_credentials(self, data: Mapping[str, Any]) -> VendorCredentials:
        now = utcnow()
        creds = VendorCredentials(
            id=new_id(),
            username=data["username"],
            password=data["password"],
            auth_mode=data.get("auth_mode") or "session_ticket",
            api_key=data.get("api_key"),
            api_secret=data.get("api_secret"),
            session_token=data.get("session_token"),
            feature_code=data.get("feature_code"),
            customer_no=data.get("customer_no"),
            session_expiry=data.get("session_expiry"),
            last_sync=None,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._credentials = creds
        return creds

    def _require_credentials(self, credentials_id: str) -> VendorCredentials:
        creds = self._credentials
        if creds is None or creds.id != credentials_id:
            raise NotFoundError("Credentials not found")
        return creds

    def update_session(self, credentials_id: str, session: SessionInfo) -> None:
        with self._lock:
            creds = self._require_credentials(credentials_id)
            creds.session_token = session.session_token
            creds.feature_code = session.feature_code
            creds.customer_no = session.customer_no
            creds.session_expiry = session.expires_at
            creds.updated_at = utcnow()

    def update_last_sync(self, credentials_id: str, at: datetime | None = None) -> None:
        with self._lock:
            creds = self._require_credentials(credentials_id)
            creds.last_sync = at or utcnow()

    # --- Branches ---

    def list_branches(self) -> list[Branch]:
        with self._lock:
            return sorted(self._branches.values(), key=lambda b: b.created_at)

    def get_branch(self, branch_id: str) -> Branch | None:
        with self._lock:
            return self._branches.get(branch_id)

    def create_branch(self, data: Mapping[str, Any]) -> Branch:
        branch = Branch(
            id=new_id(),
            name=data["name"],
            email=data["email"],
            state=data["state"],
            created_at=utcnow(),
        )
        with self._lock:
            self._branches[branch.id] = branch
        return branch

    def update_branch(self, branch_id: str, patch: Mapping[str, Any]) -> Branch:
        changes = filter_patch(patch, BRANCH_MUTABLE_FIELDS)
        with self._lock:
            branch = self._branches.get(branch_id)
            if branch is None:
                raise NotFoundError("Branch not found")
            for k, v in changes.items():
                setattr(branch, k, v)
            return branch

    def delete_branch(self, branch_id: str) -> None:
        with self._lock:
            if self._branches.pop(branch_id, None) is None:
                raise NotFoundError("Branch not found")

    # --- Devices ---

    def list_devices(self) -> list[Device]:
        with self._lock:
            return sorted(self._devices.values(), key=lambda d: d.created_at)

    def get_device(self, device_id: str) -> Device | None:
        with self._lock:
            return self._devices.get(device_id)

    def get_device_by_external_id(self, external_device_id: str) -> Device | None:
        with self._lock:
            for d in self._devices.values():
                if d.external_device_id == external_device_id:
                    return d
            return None

    def create_device(self, data: Mapping[str, Any]) -> Device:
        now = utcnow()
        device = Device(
            id=new_id(),
            external_device_id=data["external_device_id"],
            name=data["name"],
            serial=data["serial"],
            type=data.get("type"),
            version=data.get("version"),
            ip_address=data.get("ip_address"),
            status=data.get("status") or "unknown",
            last_seen=data.get("last_seen"),
            branch_id=data.get("branch_id"),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if self.get_device_by_external_id(device.external_device_id) is not None:
                raise StorageFailure(f"duplicate external device id: {device.external_device_id}")
            self._devices[device.id] = device
        return device

    def update_device(self, device_id: str, patch: Mapping[str, Any]) -> Device:
        changes = filter_patch(patch, DEVICE_MUTABLE_FIELDS)
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                raise NotFoundError("Device not found")
            for k, v in changes.items():
                setattr(device, k, v)
            device.updated_at = utcnow()
            return device

    def update_device_status(self, device_id: str, status: str, at: datetime | None = None) -> None:
        at = at or utcnow()
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                raise NotFoundError("Device not found")
            device.status = status
            device.last_seen = at
            device.updated_at = at

    def delete_device(self, device_id: str) -> None:
        with self._lock:
            if self._devices.pop(device_id, None) is None:
                raise NotFoundError("Device not found")
            self._history = [h for h in self._history if h.device_id != device_id]

    # --- Status history ---

    def add_status_history(
        self, device_id: str, status: str, checked_at: datetime | None = None
    ) -> DeviceStatusHistory:
        entry = DeviceStatusHistory(
            id=new_id(),
            device_id=device_id,
            status=status,
            checked_at=checked_at or utcnow(),
        )
        with self._lock:
            self._history.append(entry)
        return entry

    def get_device_history(
        self, device_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[DeviceStatusHistory]:
        with self._lock:
            rows = [h for h in self._history if h.device_id == device_id]
        # Stable sort keeps insertion order reversed for identical timestamps.
        rows.reverse()
        rows.sort(key=lambda h: h.checked_at, reverse=True)
        return rows[: max(limit, 0)]

    # --- Notification settings ---

    def get_notification_settings(self) -> NotificationSettings | None:
        with self._lock:
            return self._notification_settings

    def save_notification_settings(self, data: Mapping[str, Any]) -> NotificationSettings:
        row = NotificationSettings(
            id=new_id(),
            enabled=data.get("enabled", True),
            email=data["email"],
            threshold=data.get("threshold", 10),
            check_interval_minutes=data.get("check_interval_minutes", 15),
            offline_alert=data.get("offline_alert", True),
            online_alert=data.get("online_alert", False),
            updated_at=utcnow(),
        )
        with self._lock:
            self._notification_settings = row
        return row
