from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from ..deps import get_storage
from ..schemas import NotificationSettingsIn, NotificationSettingsOut
from ..storage.base import Storage

router = APIRouter(prefix="/api", tags=["notification-settings"])

logger = logging.getLogger("branchwatch.routes.notification_settings")


@router.get("/notification-settings", response_model=Optional[NotificationSettingsOut])
def get_notification_settings(storage: Storage = Depends(get_storage)) -> Optional[NotificationSettingsOut]:
    row = storage.get_notification_settings()
    if row is None:
        return None
    return NotificationSettingsOut.model_validate(row)


@router.post("/notification-settings", response_model=NotificationSettingsOut)
def save_notification_settings(
    req: NotificationSettingsIn, storage: Storage = Depends(get_storage)
) -> NotificationSettingsOut:
    row = storage.save_notification_settings(req.model_dump())
    logger.info(
        "notification settings saved",
        extra={"fields": {"threshold": row.threshold, "enabled": row.enabled}},
    )
    return NotificationSettingsOut.model_validate(row)
