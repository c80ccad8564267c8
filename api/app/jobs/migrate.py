from __future__ import annotations

import logging

from ..config import settings
from ..db import make_engine
from ..migrations import upgrade_head
from ..observability import configure_logging


logger = logging.getLogger("branchwatch.job.migrate")


def main() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=level, log_format=settings.log_format)

    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is empty; cannot run migrations")

    upgrade_head(engine=make_engine(settings.database_url), database_url=settings.database_url)

    logger.info("migrate complete")


if __name__ == "__main__":
    main()
