from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Wire models use camelCase (what the dashboard UI sends and reads)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
    )


# --- Vendor credentials ---


class CredentialsIn(ApiModel):
    username: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=1, max_length=1024)
    auth_mode: Literal["api_key", "session_ticket"] = "session_ticket"
    api_key: Optional[str] = Field(None, max_length=1024)
    api_secret: Optional[str] = Field(None, max_length=1024)

    @model_validator(mode="after")
    def _check_auth_mode(self) -> "CredentialsIn":
        if self.auth_mode == "api_key" and not (self.api_key and self.api_secret):
            raise ValueError("apiKey and apiSecret are required when authMode is api_key")
        return self


class CredentialsOut(ApiModel):
    """Stored credentials with secrets (password, apiSecret, session token) removed."""

    id: str
    username: str
    auth_mode: str
    api_key: Optional[str] = None
    has_session: bool = False
    feature_code: Optional[str] = None
    customer_no: Optional[str] = None
    session_expiry: Optional[datetime] = None
    last_sync: Optional[datetime] = None
    created_at: datetime


# --- Branches ---


class BranchIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=256)
    email: str = Field(..., min_length=1, max_length=320)
    state: str = Field(..., min_length=1, max_length=128)


class BranchUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=256)
    email: Optional[str] = Field(None, min_length=1, max_length=320)
    state: Optional[str] = Field(None, min_length=1, max_length=128)


class BranchOut(ApiModel):
    id: str
    name: str
    email: str
    state: str
    created_at: datetime


class BranchCreateWithDevicesIn(BranchIn):
    serials: List[str] = Field(default_factory=list, max_length=500)


class BranchCreateWithDevicesOut(ApiModel):
    branch: BranchOut
    devices_synced: int
    vendor_error: Optional[str] = None


class SyncDevicesIn(ApiModel):
    serials: List[str] = Field(..., min_length=1, max_length=500)


class SyncDevicesOut(ApiModel):
    success: bool
    devices_synced: int


# --- Devices ---


class DeviceOut(ApiModel):
    id: str
    external_device_id: str
    name: str
    serial: str
    type: Optional[str] = None
    version: Optional[str] = None
    ip_address: Optional[str] = None
    status: str
    last_seen: Optional[datetime] = None
    branch_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DeviceBranchUpdate(ApiModel):
    # null unassigns the device.
    branch_id: Optional[str] = None


class StatusHistoryOut(ApiModel):
    id: str
    device_id: str
    status: str
    checked_at: datetime


class CheckStatusOut(ApiModel):
    success: bool
    checked: int
    status_changes: int = 0


class SuccessOut(ApiModel):
    success: bool = True


# --- Notification settings ---


class NotificationSettingsIn(ApiModel):
    enabled: bool = True
    email: str = Field(..., min_length=3, max_length=320)
    threshold: int = Field(10, ge=0, le=100_000)
    check_interval_minutes: int = Field(15, ge=1, le=24 * 60)
    offline_alert: bool = True
    online_alert: bool = False


class NotificationSettingsOut(ApiModel):
    id: str
    enabled: bool
    email: str
    threshold: int
    check_interval_minutes: int
    offline_alert: bool
    online_alert: bool
    updated_at: datetime


# --- Stats ---


class StatusSlice(ApiModel):
    name: str
    value: int


class StateStats(ApiModel):
    state: str
    online: int
    offline: int
    unknown: int


class StatusSummary(ApiModel):
    total: int
    online: int
    offline: int
    unknown: int


class ChartDataOut(ApiModel):
    device_status: List[StatusSlice]
    state_wise: List[StateStats]
    summary: StatusSummary
