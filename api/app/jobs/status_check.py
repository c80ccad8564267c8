from __future__ import annotations

import logging

from ..config import settings
from ..migrations import maybe_run_startup_migrations
from ..observability import configure_logging
from ..services.notifications import AlertNotifier
from ..services.status_check import default_gateway_factory, run_status_check
from ..storage import SqlStorage, build_storage


logger = logging.getLogger("branchwatch.job.status_check")


def main() -> int:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=level, log_format=settings.log_format)

    storage = build_storage(settings)
    if not isinstance(storage, SqlStorage):
        # A fresh in-memory store has no credentials or devices to check.
        logger.error("status_check job requires DATABASE_URL")
        return 2

    maybe_run_startup_migrations(engine=storage.engine, settings=settings)

    result = run_status_check(
        storage,
        default_gateway_factory(settings),
        AlertNotifier.from_settings(settings),
    )
    logger.info(
        "status_check complete",
        extra={
            "fields": {
                "checked": result.checked,
                "status_changes": result.status_changes,
                "skipped": result.skipped,
                "vendor_error": result.error.kind if result.error else None,
            }
        },
    )
    return 1 if result.error is not None else 0


if __name__ == "__main__":
    raise SystemExit(main())
