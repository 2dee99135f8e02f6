"""Pytest fixtures for Helpdesk AI tests."""

import os
import tempfile
from unittest.mock import AsyncMock, MagicMock

import pytest

_ENV_KEYS = ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY")


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep real provider keys out of the tests and start from fresh settings.

    Environment-level API keys act as fallbacks for keys missing from the
    settings row, so any key exported in the developer's shell would change
    which candidates the broker attempts.
    """
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ENVIRONMENT", "test")

    from helpdesk_ai.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    # Cleanup
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def usage_storage(temp_db):
    """Create a UsageStorage instance with temporary database."""
    from helpdesk_ai.costs.storage import UsageStorage

    return UsageStorage(temp_db)


@pytest.fixture
def usage_logger(usage_storage):
    """Create a UsageLogger over the temporary ledger."""
    from helpdesk_ai.costs.tracker import UsageLogger

    return UsageLogger(storage=usage_storage)


def make_mock_pool():
    """Build a mock asyncpg pool with an acquirable connection.

    Returns (pool, conn) where ``pool.acquire()`` used as an async context
    manager yields ``conn``.  asyncpg's ``pool.acquire()`` returns the
    context manager synchronously, so ``acquire`` is a plain ``MagicMock``.
    """
    pool = AsyncMock()
    conn = AsyncMock()

    acq_cm = AsyncMock()
    acq_cm.__aenter__.return_value = conn
    acq_cm.__aexit__.return_value = False
    pool.acquire = MagicMock(return_value=acq_cm)

    return pool, conn


@pytest.fixture
def mock_pool():
    """Mock asyncpg pool and its connection."""
    return make_mock_pool()
