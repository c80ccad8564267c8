from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, text

from .config import Settings
from .db import Base


logger = logging.getLogger("branchwatch.migrations")


# Fixed advisory lock ID so only one process migrates at a time.
_MIGRATION_LOCK_ID = 4921700355128841213


def _alembic_config(database_url: str) -> Config:
    # alembic.ini lives at repo root.
    repo_root = Path(__file__).resolve().parents[2]
    cfg = Config(str(repo_root / "alembic.ini"))

    # Make sure the script location resolves even when CWD is not repo root.
    cfg.set_main_option("script_location", str(repo_root / "migrations"))
    # configparser treats "%" as interpolation syntax.
    cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    cfg.attributes["skip_logging_config"] = True
    return cfg


def _acquire_lock(engine: Engine):
    if engine.dialect.name != "postgresql":
        return None
    lock_conn = engine.connect()
    try:
        lock_conn.execute(text("SELECT pg_advisory_lock(:id)"), {"id": _MIGRATION_LOCK_ID})
        lock_conn.commit()
    except Exception:
        lock_conn.close()
        logger.warning("pg_advisory_lock failed; continuing without lock", exc_info=True)
        return None
    logger.info("acquired migration advisory lock")
    return lock_conn


def upgrade_head(*, engine: Engine, database_url: str) -> None:
    """Run `alembic upgrade head`, holding a Postgres advisory lock when available.

    Session-level advisory locks are held per connection, so the lock
    connection stays open for the whole upgrade.
    """

    lock_conn = _acquire_lock(engine)
    try:
        command.upgrade(_alembic_config(database_url), "head")
        logger.info("DB migrations applied (head)")
    finally:
        if lock_conn is not None:
            try:
                lock_conn.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": _MIGRATION_LOCK_ID})
                lock_conn.commit()
            except Exception:
                logger.warning("pg_advisory_unlock failed", exc_info=True)
            finally:
                lock_conn.close()


def maybe_run_startup_migrations(*, engine: Engine, settings: Settings) -> None:
    """Bring the schema up to date on startup.

    AUTO_MIGRATE runs alembic; otherwise the tables are created directly when
    missing (no-op for an already migrated database).
    """

    if not settings.database_url:
        return
    if settings.auto_migrate:
        logger.info("AUTO_MIGRATE enabled; applying migrations")
        upgrade_head(engine=engine, database_url=settings.database_url)
        return

    logger.info("AUTO_MIGRATE disabled; ensuring tables exist")
    from . import models  # noqa: F401  (register tables on Base.metadata)

    Base.metadata.create_all(engine)
