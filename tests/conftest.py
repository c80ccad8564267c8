from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine

from api.app.db import Base
from api.app.storage import MemoryStorage, SqlStorage, Storage


@pytest.fixture(params=["memory", "sql"])
def storage(request: pytest.FixtureRequest, tmp_path: Path) -> Storage:
    """Both storage backends; the SQL one returns detached rows from a SQLite file."""
    if request.param == "memory":
        return MemoryStorage()
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'storage.db'}")
    Base.metadata.create_all(engine)
    return SqlStorage(engine)
