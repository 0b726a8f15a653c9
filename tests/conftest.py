"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient

from duckdb_explorer.config import settings
from duckdb_explorer.database import ConnectionPool
from duckdb_explorer.main import app
from duckdb_explorer.service import DatabaseExplorer


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_data_dir(monkeypatch, tmp_path):
    """Create temporary data directories and patch them into settings."""
    data_dir = tmp_path / "data"
    meta_dir = data_dir / "meta"

    monkeypatch.setattr(settings, "data_dir", data_dir)
    monkeypatch.setattr(settings, "meta_dir", meta_dir)

    yield {"data_dir": data_dir, "meta_dir": meta_dir}


@pytest.fixture
def client(temp_data_dir):
    """Create a test client; entering it runs the application lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def api_prefix():
    return settings.api_prefix


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pool(clock):
    """Non-exclusive pool with a small capacity and a fake clock."""
    connection_pool = ConnectionPool(
        max_pool_size=3, exclusive_active_database=False, clock=clock
    )
    yield connection_pool
    connection_pool.close_all()


@pytest.fixture
def explorer(tmp_path):
    """DatabaseExplorer over a temporary data directory (exclusive mode)."""
    service = DatabaseExplorer(data_dir=tmp_path / "data")
    service.ensure_directories()
    yield service
    service.shutdown()
