from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_gateway_factory, get_notifier, get_storage
from ..errors import AppError, error_detail, to_http, vendor_failure_to_http
from ..schemas import (
    BranchCreateWithDevicesIn,
    BranchCreateWithDevicesOut,
    BranchIn,
    BranchOut,
    BranchUpdate,
    SuccessOut,
    SyncDevicesIn,
    SyncDevicesOut,
)
from ..services.notifications import AlertNotifier
from ..services.status_check import GatewayFactory, sync_devices_into_branch
from ..storage.base import Storage

router = APIRouter(prefix="/api", tags=["branches"])

logger = logging.getLogger("branchwatch.routes.branches")


def _clean_serials(serials: List[str]) -> List[str]:
    # Drop blanks and duplicates, keep the caller's order.
    return list(dict.fromkeys(s.strip() for s in serials if s and s.strip()))


def _require_credentials(storage: Storage) -> None:
    if storage.get_credentials() is None:
        raise HTTPException(status_code=400, detail=error_detail("VALIDATION_ERROR", "No credentials configured"))


def _branch_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail=error_detail("NOT_FOUND", "Branch not found"))


@router.get("/branches", response_model=List[BranchOut])
def list_branches(storage: Storage = Depends(get_storage)) -> List[BranchOut]:
    return [BranchOut.model_validate(b) for b in storage.list_branches()]


@router.get("/branches/{branch_id}", response_model=BranchOut)
def get_branch(branch_id: str, storage: Storage = Depends(get_storage)) -> BranchOut:
    branch = storage.get_branch(branch_id)
    if branch is None:
        raise _branch_not_found()
    return BranchOut.model_validate(branch)


@router.post("/branches", response_model=BranchOut)
def create_branch(req: BranchIn, storage: Storage = Depends(get_storage)) -> BranchOut:
    branch = storage.create_branch(req.model_dump())
    logger.info("branch created", extra={"fields": {"branch_id": branch.id}})
    return BranchOut.model_validate(branch)


@router.patch("/branches/{branch_id}", response_model=BranchOut)
def update_branch(branch_id: str, req: BranchUpdate, storage: Storage = Depends(get_storage)) -> BranchOut:
    patch = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
    try:
        branch = storage.update_branch(branch_id, patch)
    except AppError as e:
        raise to_http(e)
    return BranchOut.model_validate(branch)


@router.delete("/branches/{branch_id}", response_model=SuccessOut)
def delete_branch(branch_id: str, storage: Storage = Depends(get_storage)) -> SuccessOut:
    try:
        storage.delete_branch(branch_id)
    except AppError as e:
        raise to_http(e)
    logger.info("branch deleted", extra={"fields": {"branch_id": branch_id}})
    return SuccessOut(success=True)


@router.post("/branches/create-with-devices", response_model=BranchCreateWithDevicesOut)
def create_branch_with_devices(
    req: BranchCreateWithDevicesIn,
    storage: Storage = Depends(get_storage),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    notifier: AlertNotifier | None = Depends(get_notifier),
) -> BranchCreateWithDevicesOut:
    """Create a branch, then pull the listed serials from the portal into it.

    The branch is kept even when the portal call fails; the failure is
    reported in `vendorError` and zero devices are synced.
    """

    _require_credentials(storage)
    branch = storage.create_branch(req.model_dump(exclude={"serials"}))

    serials = _clean_serials(req.serials)
    devices_synced = 0
    vendor_error: str | None = None
    if serials:
        result = sync_devices_into_branch(storage, gateway_factory, branch.id, serials, notifier=notifier)
        devices_synced = result.reconcile.upserted
        if result.error is not None:
            vendor_error = result.error.message

    logger.info(
        "branch created with devices",
        extra={"fields": {"branch_id": branch.id, "requested": len(serials), "synced": devices_synced}},
    )
    return BranchCreateWithDevicesOut(
        branch=BranchOut.model_validate(branch),
        devices_synced=devices_synced,
        vendor_error=vendor_error,
    )


@router.post("/branches/{branch_id}/sync-devices", response_model=SyncDevicesOut)
def sync_branch_devices(
    branch_id: str,
    req: SyncDevicesIn,
    storage: Storage = Depends(get_storage),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    notifier: AlertNotifier | None = Depends(get_notifier),
) -> SyncDevicesOut:
    if storage.get_branch(branch_id) is None:
        raise _branch_not_found()
    _require_credentials(storage)

    serials = _clean_serials(req.serials)
    if not serials:
        raise HTTPException(status_code=400, detail=error_detail("VALIDATION_ERROR", "No serial numbers given"))

    result = sync_devices_into_branch(storage, gateway_factory, branch_id, serials, notifier=notifier)
    if result.error is not None:
        raise vendor_failure_to_http(result.error.kind, result.error.message)
    return SyncDevicesOut(success=True, devices_synced=result.reconcile.upserted)
