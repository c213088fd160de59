"""Common test fixtures for the Sparklog sync engine."""

import httpx
import pytest
from sqlalchemy import create_engine

from sparklog_sync.config import SyncConfig
from sparklog_sync.observability import MetricsCollector
from sparklog_sync.services.draft_log import DraftLog
from sparklog_sync.services.edit_cache import EditCache
from sparklog_sync.storage.kv_store import InMemoryStore, SqliteStore
from tests.fakes import FakeClock, FakePipeline, FakeRemoteStore, FakeSnapshot


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def sync_config(tmp_path):
    """Explicit configuration, independent of the caller's environment."""
    return SyncConfig(
        base_dir=tmp_path,
        remote_api_url="https://api.example.test",
        repo_owner="alice",
        repo_name="notes",
        branch="main",
        notes_dir="notes",
        token="test-token",
        snapshot_url="https://snapshot.example.test/static-notes",
        workflow_file="build-static-content.yml",
        state_db_path=tmp_path / "state.db",
        draft_ttl_seconds=24 * 60 * 60,
        cache_ttl_seconds=24 * 60 * 60,
        build_timeout_seconds=10 * 60,
        batch_concurrency=2,
        batch_delay_ms=0,
        http_timeout=5.0,
        client_name="sparklog-test",
        client_version="1.0",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def sqlite_store(tmp_path):
    """SqliteStore on a throwaway database file."""
    engine = create_engine(f"sqlite:///{tmp_path / 'state.db'}")
    yield SqliteStore(engine)
    engine.dispose()


@pytest.fixture
def snapshot():
    return FakeSnapshot()


@pytest.fixture
def pipeline():
    return FakePipeline()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def draft_log(store, snapshot, clock, sync_config):
    return DraftLog(store, snapshot=snapshot, clock=clock, sync_config=sync_config)


@pytest.fixture
def edit_cache(clock, sync_config):
    return EditCache(clock=clock, sync_config=sync_config)


@pytest.fixture
def mock_transport():
    """Build an ``httpx.MockTransport`` that records every request.

    Usage::

        transport, requests = mock_transport(handler)
    """

    def factory(handler):
        requests = []

        def recording(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        return httpx.MockTransport(recording), requests

    return factory



@pytest.fixture(autouse=True)
def isolated_metrics(tmp_path, monkeypatch):
    """Keep traced operations from writing metrics into the home directory."""
    collector = MetricsCollector(
        metrics_file=tmp_path / "metrics.json", auto_save_interval=0, load_existing=False
    )
    monkeypatch.setattr("sparklog_sync.observability.metrics", collector)
    return collector
