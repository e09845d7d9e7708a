"""
Pytest fixtures for ChainSage tests.

Temporary SQLite object store and backup file per test, the fake Etherscan
indexer from helpers, and service / TestClient fixtures wired to them.
"""

from __future__ import annotations

import time

import pytest

from backend_chainsage.config.settings import Settings
from backend_chainsage.database.object_store import SQLAlchemyObjectStore

from helpers import FakeIndexer


@pytest.fixture
def now_ts() -> int:
    return int(time.time())


@pytest.fixture
def object_store(tmp_path) -> SQLAlchemyObjectStore:
    store = SQLAlchemyObjectStore(f"sqlite:///{tmp_path / 'chainsage.db'}")
    store.init_db()
    yield store
    store.dispose()


@pytest.fixture
def backup_path(tmp_path):
    return tmp_path / "monitored_wallets_backup.json"


@pytest.fixture
def indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture
def settings(tmp_path, backup_path) -> Settings:
    return Settings(
        etherscan_api_key="test-key",
        request_delay_sec=0.0,
        request_timeout_sec=5.0,
        database_url=f"sqlite:///{tmp_path / 'chainsage.db'}",
        backup_file_path=str(backup_path),
        aggregation_interval_sec=3600,
    )


@pytest.fixture
def service(settings, indexer, object_store):
    """MonitoringService over the fake indexer, rule-based classifier, temp SQLite store."""
    from backend_chainsage.monitoring.service import create_service

    return create_service(settings, transport=indexer.transport(), object_store=object_store)


@pytest.fixture
def client(service):
    """FastAPI TestClient; lifespan runs (cold start, broadcaster) but no scheduler."""
    from fastapi.testclient import TestClient

    from backend_chainsage.api_server.app import create_app

    with TestClient(create_app(service, schedule=False)) as c:
        yield c
