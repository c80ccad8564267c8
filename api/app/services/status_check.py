from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

from ..config import Settings
from ..errors import NotFoundError, ValidationFailure
from ..models import Device, VendorCredentials
from ..storage.base import Storage
from .notifications import AlertNotifier, evaluate_alerts
from .reconcile import ReconcileResult, check_and_record_status, reconcile, status_from_flag
from .vendor_gateway import HikConnectGateway, SessionInfo, VendorError, as_utc


logger = logging.getLogger("branchwatch.status_check")

GatewayFactory = Callable[[VendorCredentials], HikConnectGateway]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_gateway_factory(settings: Settings) -> GatewayFactory:
    def _factory(creds: VendorCredentials) -> HikConnectGateway:
        return HikConnectGateway.from_credentials(
            creds,
            base_url=settings.vendor_base_url,
            timeout_s=settings.vendor_timeout_s,
        )

    return _factory


# -----------------------------
# Session persistence
# -----------------------------

# The scheduler tick and API-triggered checks can both refresh the vendor
# session; writes to the credential row are serialized per credential id.
_session_locks: dict[str, threading.Lock] = {}
_session_locks_guard = threading.Lock()


def _credential_lock(credentials_id: str) -> threading.Lock:
    with _session_locks_guard:
        lock = _session_locks.get(credentials_id)
        if lock is None:
            lock = threading.Lock()
            _session_locks[credentials_id] = lock
        return lock


def _forget_credential_lock(credentials_id: str) -> None:
    with _session_locks_guard:
        _session_locks.pop(credentials_id, None)


def persist_session(storage: Storage, credentials_id: str, session: SessionInfo) -> bool:
    """Write a refreshed vendor session back to the credential store.

    Returns False without writing when the credentials were replaced meanwhile,
    or when the stored session already expires later than this one.
    """

    with _credential_lock(credentials_id):
        current = storage.get_credentials()
        if current is None or current.id != credentials_id:
            logger.info("credentials replaced during vendor call; not persisting session")
            _forget_credential_lock(credentials_id)
            return False
        if (
            current.session_token
            and current.session_expiry is not None
            and session.expires_at is not None
            and as_utc(current.session_expiry) > as_utc(session.expires_at)
        ):
            logger.info("stored vendor session is newer; not overwriting")
            return False
        try:
            storage.update_session(credentials_id, session)
        except NotFoundError:
            logger.info("credentials replaced during vendor call; not persisting session")
            _forget_credential_lock(credentials_id)
            return False
        return True


def _finish_vendor_cycle(storage: Storage, creds: VendorCredentials, gateway: HikConnectGateway) -> None:
    if gateway.session_refreshed and gateway.session is not None:
        persist_session(storage, creds.id, gateway.session)
    if gateway.last_error is None:
        try:
            storage.update_last_sync(creds.id)
        except NotFoundError:
            logger.info("credentials replaced during vendor call; last sync not recorded")


# -----------------------------
# Alerts
# -----------------------------


def _offline_count(devices: Iterable[Device]) -> int:
    return sum(1 for d in devices if d.status == "offline")


def _raise_alerts(
    storage: Storage,
    notifier: AlertNotifier | None,
    *,
    before_offline: int,
    came_online: Sequence[str],
) -> None:
    if notifier is None:
        return
    try:
        after_offline = _offline_count(storage.list_devices())
        alerts = evaluate_alerts(
            storage.get_notification_settings(),
            before_offline=before_offline,
            after_offline=after_offline,
            came_online=came_online,
        )
        for alert in alerts:
            notifier.notify(alert)
    except Exception:
        # A failed alert never fails the status check that triggered it.
        logger.exception("alert evaluation failed")


# -----------------------------
# Workflows
# -----------------------------


@dataclass
class StatusCheckResult:
    checked: int = 0
    status_changes: int = 0
    failed: int = 0
    skipped: bool = False
    error: VendorError | None = None
    came_online: list[str] = field(default_factory=list)


def run_status_check(
    storage: Storage,
    gateway_factory: GatewayFactory,
    notifier: AlertNotifier | None = None,
) -> StatusCheckResult:
    """Poll the portal for every known device and record status transitions.

    Shared by the scheduler tick and the manual "check status now" endpoint.
    Without credentials this is a logged no-op.
    """

    creds = storage.get_credentials()
    if creds is None:
        logger.info("No credentials configured, skipping status check")
        return StatusCheckResult(skipped=True)

    gateway = gateway_factory(creds)
    devices = storage.list_devices()
    before_offline = _offline_count(devices)

    by_external = {d.external_device_id: d for d in devices}
    by_serial = {d.serial: d for d in devices}
    serials = list(dict.fromkeys(d.serial for d in devices if d.serial))

    records = gateway.fetch_devices_by_serials(serials)
    result = StatusCheckResult(error=gateway.last_error)
    if gateway.last_error is not None:
        logger.warning(
            "status check got no vendor data",
            extra={"fields": {"kind": gateway.last_error.kind, "error": gateway.last_error.message}},
        )

    now = utcnow()
    for rec in records:
        device = by_external.get(rec.external_id) or by_serial.get(rec.serial)
        if device is None:
            continue
        try:
            new_status = status_from_flag(rec.online_flag)
            if check_and_record_status(storage, device, new_status, now=now):
                result.status_changes += 1
                if new_status == "online":
                    result.came_online.append(device.name)
            result.checked += 1
        except Exception:
            result.failed += 1
            logger.exception("status check failed for device", extra={"fields": {"device_id": device.id}})

    _finish_vendor_cycle(storage, creds, gateway)
    _raise_alerts(storage, notifier, before_offline=before_offline, came_online=result.came_online)

    logger.info(
        "Checked %s devices, %s status changes",
        result.checked,
        result.status_changes,
        extra={"fields": {"requested": len(serials), "returned": len(records), "failed": result.failed}},
    )
    return result


@dataclass
class BranchSyncResult:
    reconcile: ReconcileResult
    error: VendorError | None = None


def sync_devices_into_branch(
    storage: Storage,
    gateway_factory: GatewayFactory,
    branch_id: str,
    serials: Sequence[str],
    notifier: AlertNotifier | None = None,
) -> BranchSyncResult:
    """Fetch the given serials from the portal and upsert them under a branch."""

    creds = storage.get_credentials()
    if creds is None:
        raise ValidationFailure("No credentials configured")

    before_offline = _offline_count(storage.list_devices())
    gateway = gateway_factory(creds)
    vendor_devices = gateway.fetch_devices_by_serials(serials)
    if gateway.last_error is not None:
        logger.warning(
            "branch sync got no vendor data",
            extra={"fields": {"branch_id": branch_id, "kind": gateway.last_error.kind}},
        )

    result = reconcile(storage, vendor_devices, target_branch_id=branch_id)
    _finish_vendor_cycle(storage, creds, gateway)
    _raise_alerts(storage, notifier, before_offline=before_offline, came_online=result.came_online)
    return BranchSyncResult(reconcile=result, error=gateway.last_error)
