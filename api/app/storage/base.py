from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping

from ..errors import ValidationFailure
from ..models import Branch, Device, DeviceStatusHistory, NotificationSettings, VendorCredentials
from ..services.vendor_gateway import SessionInfo


# Device fields callers may patch through update_device.
DEVICE_MUTABLE_FIELDS = frozenset(
    {"name", "serial", "type", "version", "ip_address", "status", "last_seen", "branch_id"}
)
BRANCH_MUTABLE_FIELDS = frozenset({"name", "email", "state"})

DEFAULT_HISTORY_LIMIT = 50


class Storage(ABC):
    """Persistence contract shared by the in-memory and SQL backends.

    Update/delete of a missing id raises NotFoundError; backend problems raise
    StorageFailure.
    """

    # --- Vendor credentials (single row) ---

    @abstractmethod
    def get_credentials(self) -> VendorCredentials | None: ...

    @abstractmethod
    def save_credentials(self, data: Mapping[str, Any]) -> VendorCredentials:
        """Replace any existing credentials with a new record."""

    @abstractmethod
    def update_session(self, credentials_id: str, session: SessionInfo) -> None: ...

    @abstractmethod
    def update_last_sync(self, credentials_id: str, at: datetime | None = None) -> None: ...

    # --- Branches ---

    @abstractmethod
    def list_branches(self) -> list[Branch]: ...

    @abstractmethod
    def get_branch(self, branch_id: str) -> Branch | None: ...

    @abstractmethod
    def create_branch(self, data: Mapping[str, Any]) -> Branch: ...

    @abstractmethod
    def update_branch(self, branch_id: str, patch: Mapping[str, Any]) -> Branch: ...

    @abstractmethod
    def delete_branch(self, branch_id: str) -> None: ...

    # --- Devices ---

    @abstractmethod
    def list_devices(self) -> list[Device]: ...

    @abstractmethod
    def get_device(self, device_id: str) -> Device | None: ...

    @abstractmethod
    def get_device_by_external_id(self, external_device_id: str) -> Device | None: ...

    @abstractmethod
    def create_device(self, data: Mapping[str, Any]) -> Device: ...

    @abstractmethod
    def update_device(self, device_id: str, patch: Mapping[str, Any]) -> Device: ...

    @abstractmethod
    def update_device_status(self, device_id: str, status: str, at: datetime | None = None) -> None: ...

    @abstractmethod
    def delete_device(self, device_id: str) -> None: ...

    # --- Status history (append-only) ---

    @abstractmethod
    def add_status_history(
        self, device_id: str, status: str, checked_at: datetime | None = None
    ) -> DeviceStatusHistory: ...

    @abstractmethod
    def get_device_history(
        self, device_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[DeviceStatusHistory]: ...

    # --- Notification settings (single row) ---

    @abstractmethod
    def get_notification_settings(self) -> NotificationSettings | None: ...

    @abstractmethod
    def save_notification_settings(self, data: Mapping[str, Any]) -> NotificationSettings: ...


def filter_patch(patch: Mapping[str, Any], allowed: frozenset[str]) -> dict[str, Any]:
    unknown = set(patch) - allowed
    if unknown:
        raise ValidationFailure(f"unsupported fields: {', '.join(sorted(unknown))}")
    return dict(patch)
