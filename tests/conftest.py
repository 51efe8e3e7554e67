"""
Pytest fixtures for test infrastructure.

This module is automatically loaded by pytest and provides shared fixtures.
For fakes and helper functions, see test_helpers.py.

Database tests run against a throwaway SQLite file per test (aiosqlite),
created through the same engine factory production uses.
"""

from datetime import datetime

import pytest

from keyword_monitor.config.monitoring import MonitoringConfig


# =============================================================================
# Database fixtures
# =============================================================================
@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    from keyword_monitor.archivist.database import create_engine_for_url, init_db

    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'monitor.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from keyword_monitor.archivist.database import create_session_factory

    return create_session_factory(db_engine)


# =============================================================================
# Shared fixtures
# =============================================================================
@pytest.fixture
def now():
    """Fixed 'current time' for deterministic scheduling tests."""
    return datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def monitoring_config():
    """Default preset with the fastest allowed rate limit delay."""
    return MonitoringConfig(rate_limit_delay=0.5)
