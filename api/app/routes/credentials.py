from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_storage
from ..errors import error_detail
from ..models import VendorCredentials
from ..schemas import CredentialsIn, CredentialsOut
from ..storage.base import Storage

router = APIRouter(prefix="/api/hik-connect", tags=["credentials"])

logger = logging.getLogger("branchwatch.routes.credentials")


def credentials_out(creds: VendorCredentials) -> CredentialsOut:
    return CredentialsOut(
        id=creds.id,
        username=creds.username,
        auth_mode=creds.auth_mode,
        api_key=creds.api_key,
        has_session=bool(creds.session_token),
        feature_code=creds.feature_code,
        customer_no=creds.customer_no,
        session_expiry=creds.session_expiry,
        last_sync=creds.last_sync,
        created_at=creds.created_at,
    )


@router.get("/credentials", response_model=CredentialsOut)
def get_credentials(storage: Storage = Depends(get_storage)) -> CredentialsOut:
    creds = storage.get_credentials()
    if creds is None:
        raise HTTPException(status_code=404, detail=error_detail("NOT_FOUND", "No credentials configured"))
    return credentials_out(creds)


@router.post("/credentials", response_model=CredentialsOut)
def save_credentials(req: CredentialsIn, storage: Storage = Depends(get_storage)) -> CredentialsOut:
    data = req.model_dump()
    if req.auth_mode == "session_ticket":
        data["api_key"] = None
        data["api_secret"] = None
    creds = storage.save_credentials(data)
    logger.info("vendor credentials saved", extra={"fields": {"auth_mode": creds.auth_mode}})
    return credentials_out(creds)


@router.post("/sync")
def legacy_sync() -> None:
    """Full-catalog sync is not offered by the portal API; devices are synced per branch by serial."""
    raise HTTPException(
        status_code=400,
        detail=error_detail(
            "UNSUPPORTED",
            "Full device sync is not supported by the HikCentral Connect API",
            hint="Add devices by serial number: POST /api/branches/{id}/sync-devices or "
            "POST /api/branches/create-with-devices",
        ),
    )
