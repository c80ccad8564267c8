from __future__ import annotations

import logging

from ..config import Settings
from .base import Storage
from .memory import MemoryStorage
from .sql import SqlStorage


logger = logging.getLogger("branchwatch.storage")


def build_storage(settings: Settings) -> Storage:
    """Pick the backend once, at startup: SQL when DATABASE_URL is set, otherwise in-memory."""
    if settings.storage_backend == "sql" and settings.database_url:
        from ..db import make_engine

        logger.info("Using SQL storage backend")
        return SqlStorage(make_engine(settings.database_url))

    logger.warning("DATABASE_URL not set; using in-memory storage (data is lost on restart)")
    return MemoryStorage()


__all__ = ["Storage", "MemoryStorage", "SqlStorage", "build_storage"]
