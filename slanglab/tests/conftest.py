from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before any slanglab module builds it.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="slanglab-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "SLANGLAB_TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'slanglab.db')}",
)
os.environ.setdefault("EVIDENCE_PROVIDER", "fake")
os.environ.setdefault("GENERATOR_PROVIDER", "fake")
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:6399/0")

import pytest

from slanglab.core.config import get_settings
from slanglab.domain.models import Base
from slanglab.persistence.db import engine
from slanglab.services.entitlements import reset_entitlement_service
from slanglab.services.monitoring import reset_term_locks
from slanglab.services.resilience import reset_redis
from slanglab.services.sources import reset_source_rules_cache
from slanglab.services.telemetry import reset_telemetry


get_settings.cache_clear()


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_singletons() -> None:
    # Reset settings and process-wide caches between tests to avoid leakage.
    yield
    get_settings.cache_clear()
    reset_entitlement_service()
    reset_source_rules_cache()
    reset_term_locks()
    reset_redis()
    reset_telemetry()
