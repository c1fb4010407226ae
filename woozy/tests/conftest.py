from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before any woozy module builds it.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="woozy-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "WOOZY_TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'woozy.db')}",
)

import pytest  # noqa: E402

from woozy.domain.models import Base  # noqa: E402
from woozy.persistence.db import engine  # noqa: E402


@pytest.fixture
async def db_schema() -> None:
    # DB-backed tests start from empty tables; dispose afterwards so no connection outlives its loop.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()
