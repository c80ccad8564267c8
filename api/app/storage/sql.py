from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping

from sqlalchemy import Engine, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import make_session_factory, session_scope
from ..errors import AppError, NotFoundError, StorageFailure
from ..models import (
    Branch,
    Device,
    DeviceStatusHistory,
    NotificationSettings,
    VendorCredentials,
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


logger = logging.getLogger("branchwatch.storage")


class SqlStorage(Storage):
    """Relational backend (Postgres in production, SQLite in tests).

    Each operation runs in its own transaction; returned rows are detached
    (expire_on_commit=False) so callers can read them after the session closes.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = make_session_factory(engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.exception("storage operation failed")
            raise StorageFailure(f"storage operation failed: {type(e).__name__}") from e

    # --- Vendor credentials ---

    def get_credentials(self) -> VendorCredentials | None:
        with self._session() as session:
            return session.query(VendorCredentials).order_by(VendorCredentials.created_at.desc()).first()

    def save_credentials(self, data: Mapping[str, Any]) -> VendorCredentials:
        with self._session() as session:
            # Delete-then-insert in one transaction: at most one row ever exists.
            session.execute(delete(VendorCredentials))
            creds = VendorCredentials(
                username=data["username"],
                password=data["password"],
                auth_mode=data.get("auth_mode") or "session_ticket",
                api_key=data.get("api_key"),
                api_secret=data.get("api_secret"),
                session_token=data.get("session_token"),
                feature_code=data.get("feature_code"),
                customer_no=data.get("customer_no"),
                session_expiry=data.get("session_expiry"),
            )
            session.add(creds)
            session.flush()
            return creds

    def _require_credentials(self, session: Session, credentials_id: str) -> VendorCredentials:
        creds = session.get(VendorCredentials, credentials_id)
        if creds is None:
            raise NotFoundError("Credentials not found")
        return creds

    def update_session(self, credentials_id: str, info: SessionInfo) -> None:
        with self._session() as session:
            creds = self._require_credentials(session, credentials_id)
            creds.session_token = info.session_token
            creds.feature_code = info.feature_code
            creds.customer_no = info.customer_no
            creds.session_expiry = info.expires_at
            creds.updated_at = utcnow()

    def update_last_sync(self, credentials_id: str, at: datetime | None = None) -> None:
        with self._session() as session:
            creds = self._require_credentials(session, credentials_id)
            creds.last_sync = at or utcnow()

    # --- Branches ---

    def list_branches(self) -> list[Branch]:
        with self._session() as session:
            return session.query(Branch).order_by(Branch.created_at.asc()).all()

    def get_branch(self, branch_id: str) -> Branch | None:
        with self._session() as session:
            return session.get(Branch, branch_id)

    def create_branch(self, data: Mapping[str, Any]) -> Branch:
        with self._session() as session:
            branch = Branch(name=data["name"], email=data["email"], state=data["state"])
            session.add(branch)
            session.flush()
            return branch

    def update_branch(self, branch_id: str, patch: Mapping[str, Any]) -> Branch:
        changes = filter_patch(patch, BRANCH_MUTABLE_FIELDS)
        with self._session() as session:
            branch = session.get(Branch, branch_id)
            if branch is None:
                raise NotFoundError("Branch not found")
            for k, v in changes.items():
                setattr(branch, k, v)
            session.flush()
            return branch

    def delete_branch(self, branch_id: str) -> None:
        with self._session() as session:
            branch = session.get(Branch, branch_id)
            if branch is None:
                raise NotFoundError("Branch not found")
            # Mapped devices keep their (now dangling) branch_id.
            session.delete(branch)

    # --- Devices ---

    def list_devices(self) -> list[Device]:
        with self._session() as session:
            return session.query(Device).order_by(Device.created_at.asc()).all()

    def get_device(self, device_id: str) -> Device | None:
        with self._session() as session:
            return session.get(Device, device_id)

    def get_device_by_external_id(self, external_device_id: str) -> Device | None:
        with self._session() as session:
            return (
                session.query(Device)
                .filter(Device.external_device_id == external_device_id)
                .one_or_none()
            )

    def create_device(self, data: Mapping[str, Any]) -> Device:
        with self._session() as session:
            device = Device(
                external_device_id=data["external_device_id"],
                name=data["name"],
                serial=data["serial"],
                type=data.get("type"),
                version=data.get("version"),
                ip_address=data.get("ip_address"),
                status=data.get("status") or "unknown",
                last_seen=data.get("last_seen"),
                branch_id=data.get("branch_id"),
            )
            session.add(device)
            session.flush()
            return device

    def update_device(self, device_id: str, patch: Mapping[str, Any]) -> Device:
        changes = filter_patch(patch, DEVICE_MUTABLE_FIELDS)
        with self._session() as session:
            device = session.get(Device, device_id)
            if device is None:
                raise NotFoundError("Device not found")
            for k, v in changes.items():
                setattr(device, k, v)
            device.updated_at = utcnow()
            session.flush()
            return device

    def update_device_status(self, device_id: str, status: str, at: datetime | None = None) -> None:
        at = at or utcnow()
        with self._session() as session:
            device = session.get(Device, device_id)
            if device is None:
                raise NotFoundError("Device not found")
            device.status = status
            device.last_seen = at
            device.updated_at = at

    def delete_device(self, device_id: str) -> None:
        with self._session() as session:
            device = session.get(Device, device_id)
            if device is None:
                raise NotFoundError("Device not found")
            session.execute(delete(DeviceStatusHistory).where(DeviceStatusHistory.device_id == device_id))
            session.delete(device)

    # --- Status history ---

    def add_status_history(
        self, device_id: str, status: str, checked_at: datetime | None = None
    ) -> DeviceStatusHistory:
        with self._session() as session:
            entry = DeviceStatusHistory(device_id=device_id, status=status, checked_at=checked_at or utcnow())
            session.add(entry)
            session.flush()
            return entry

    def get_device_history(
        self, device_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[DeviceStatusHistory]:
        with self._session() as session:
            return (
                session.query(DeviceStatusHistory)
                .filter(DeviceStatusHistory.device_id == device_id)
                .order_by(DeviceStatusHistory.checked_at.desc())
                .limit(max(limit, 0))
                .all()
            )

    # --- Notification settings ---

    def get_notification_settings(self) -> NotificationSettings | None:
        with self._session() as session:
            return session.query(NotificationSettings).order_by(NotificationSettings.updated_at.desc()).first()

    def save_notification_settings(self, data: Mapping[str, Any]) -> NotificationSettings:
        with self._session() as session:
            session.execute(delete(NotificationSettings))
            row = NotificationSettings(
                enabled=data.get("enabled", True),
                email=data["email"],
                threshold=data.get("threshold", 10),
                check_interval_minutes=data.get("check_interval_minutes", 15),
                offline_alert=data.get("offline_alert", True),
                online_alert=data.get("online_alert", False),
            )
            session.add(row)
            session.flush()
            return row
