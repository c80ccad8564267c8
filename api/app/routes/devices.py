from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_gateway_factory, get_notifier, get_storage
from ..errors import AppError, error_detail, to_http, vendor_failure_to_http
from ..schemas import CheckStatusOut, DeviceBranchUpdate, DeviceOut, StatusHistoryOut, SuccessOut
from ..services.notifications import AlertNotifier
from ..services.status_check import GatewayFactory, run_status_check
from ..storage.base import DEFAULT_HISTORY_LIMIT, Storage

router = APIRouter(prefix="/api", tags=["devices"])

logger = logging.getLogger("branchwatch.routes.devices")


def _device_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail=error_detail("NOT_FOUND", "Device not found"))


@router.get("/devices", response_model=List[DeviceOut])
def list_devices(storage: Storage = Depends(get_storage)) -> List[DeviceOut]:
    return [DeviceOut.model_validate(d) for d in storage.list_devices()]


@router.get("/devices/{device_id}/history", response_model=List[StatusHistoryOut])
def get_device_history(
    device_id: str,
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=1000),
    storage: Storage = Depends(get_storage),
) -> List[StatusHistoryOut]:
    if storage.get_device(device_id) is None:
        raise _device_not_found()
    return [StatusHistoryOut.model_validate(h) for h in storage.get_device_history(device_id, limit=limit)]


@router.patch("/devices/{device_id}/branch", response_model=DeviceOut)
def update_device_branch(
    device_id: str, req: DeviceBranchUpdate, storage: Storage = Depends(get_storage)
) -> DeviceOut:
    if storage.get_device(device_id) is None:
        raise _device_not_found()
    if req.branch_id is not None and storage.get_branch(req.branch_id) is None:
        raise HTTPException(status_code=404, detail=error_detail("NOT_FOUND", "Branch not found"))

    try:
        device = storage.update_device(device_id, {"branch_id": req.branch_id})
    except AppError as e:
        raise to_http(e)
    logger.info("device branch updated", extra={"fields": {"device_id": device_id, "branch_id": req.branch_id}})
    return DeviceOut.model_validate(device)


@router.delete("/devices/{device_id}", response_model=SuccessOut)
def delete_device(device_id: str, storage: Storage = Depends(get_storage)) -> SuccessOut:
    try:
        storage.delete_device(device_id)
    except AppError as e:
        raise to_http(e)
    logger.info("device deleted", extra={"fields": {"device_id": device_id}})
    return SuccessOut(success=True)


@router.post("/devices/check-status", response_model=CheckStatusOut)
def check_status(
    storage: Storage = Depends(get_storage),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    notifier: AlertNotifier | None = Depends(get_notifier),
) -> CheckStatusOut:
    """Run the scheduled status check now.

    A portal failure answers 502 and nothing is changed locally.
    """

    if storage.get_credentials() is None:
        raise HTTPException(status_code=400, detail=error_detail("VALIDATION_ERROR", "No credentials configured"))

    result = run_status_check(storage, gateway_factory, notifier)
    if result.error is not None:
        raise vendor_failure_to_http(result.error.kind, result.error.message)
    return CheckStatusOut(
        success=True,
        checked=result.checked,
        status_changes=result.status_changes,
    )
