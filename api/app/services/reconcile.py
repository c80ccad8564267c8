from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Sequence

from ..models import Device
from ..storage.base import Storage
from .vendor_gateway import VendorDevice


logger = logging.getLogger("branchwatch.reconcile")

DeviceStatus = Literal["online", "offline", "unknown"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def status_from_flag(online_flag: int) -> DeviceStatus:
    return "online" if online_flag == 1 else "offline"


@dataclass
class ReconcileResult:
    upserted: int = 0
    created: int = 0
    updated: int = 0
    status_changes: int = 0
    failed: int = 0
    # Names of existing devices that transitioned to online in this batch.
    came_online: list[str] = field(default_factory=list)


def check_and_record_status(
    storage: Storage, device: Device, new_status: str, now: datetime | None = None
) -> bool:
    """Apply a status observation; append history only when the status actually changes.

    An unchanged status is a no-op (last_seen is not refreshed).
    """

    if device.status == new_status:
        return False

    if now is None:
        now = utcnow()
    previous = device.status
    storage.update_device_status(device.id, new_status, at=now)
    storage.add_status_history(device.id, new_status, checked_at=now)
    logger.info(
        "device status changed",
        extra={"fields": {"device_id": device.id, "name": device.name, "from": previous, "to": new_status}},
    )
    return True


def reconcile(
    storage: Storage,
    vendor_devices: Sequence[VendorDevice],
    target_branch_id: str | None = None,
    now: datetime | None = None,
) -> ReconcileResult:
    """Upsert vendor records into local devices keyed by external id.

    Records are processed in vendor order. One device failing does not stop the
    batch; it is logged and counted in `failed`. Re-running with identical data
    creates no devices and no history entries.
    """

    if now is None:
        now = utcnow()
    result = ReconcileResult()

    for vd in vendor_devices:
        new_status = status_from_flag(vd.online_flag)
        try:
            existing = storage.get_device_by_external_id(vd.external_id)
            if existing is None:
                storage.create_device(
                    {
                        "external_device_id": vd.external_id,
                        "name": vd.name,
                        "serial": vd.serial,
                        "type": vd.type,
                        "version": vd.version,
                        "ip_address": vd.ip_address,
                        "status": new_status,
                        "last_seen": now,
                        "branch_id": target_branch_id,
                    }
                )
                result.created += 1
            else:
                if check_and_record_status(storage, existing, new_status, now=now):
                    result.status_changes += 1
                    if new_status == "online":
                        result.came_online.append(existing.name)

                patch: dict[str, object] = {
                    "name": vd.name,
                    "serial": vd.serial,
                    "type": vd.type,
                    "version": vd.version,
                    "last_seen": now,
                }
                if vd.ip_address:
                    patch["ip_address"] = vd.ip_address
                if target_branch_id is not None:
                    patch["branch_id"] = target_branch_id
                storage.update_device(existing.id, patch)
                result.updated += 1
            result.upserted += 1
        except Exception:
            result.failed += 1
            logger.exception(
                "reconcile failed for device",
                extra={"fields": {"external_id": vd.external_id, "serial": vd.serial}},
            )

    logger.info(
        "reconcile complete",
        extra={
            "fields": {
                "received": len(vendor_devices),
                "upserted": result.upserted,
                "created": result.created,
                "status_changes": result.status_changes,
                "failed": result.failed,
            }
        },
    )
    return result
