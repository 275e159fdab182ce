"""Shared pytest fixtures and configuration.

Fixture Categories:
1. Settings: test_settings (small chunks, tiny embedding dimension)
2. Fakes: fake_repository, fake_embedder, recording_queue, vector_store
3. Infrastructure: respx_mock, mock_supabase_client, logfire_capture
"""

import os

# Settings must be constructible without a real .env
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

from unittest.mock import MagicMock

import logfire
import pytest
import respx

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.services.vector_store import VectorStore
from tests.fakes import (
    FAKE_DIMENSIONS,
    FakeEmbedder,
    FakeKnowledgeRepository,
    RecordingJobQueue,
)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Settings tuned for tests: no polite delay, checks every couple of pages."""
    return Settings(
        supabase_url="https://test.supabase.co",
        supabase_service_key="test-service-key",
        embedding_dimensions=FAKE_DIMENSIONS,
        chunk_size_words=500,
        chunk_overlap_words=50,
        crawler_cancel_check_interval=2,
        crawler_progress_interval=2,
        crawler_request_delay_seconds=0.0,
        training_job_backoff_seconds=0.0,
        crawl_job_backoff_seconds=0.0,
    )


@pytest.fixture
def fake_repository() -> FakeKnowledgeRepository:
    return FakeKnowledgeRepository()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def recording_queue() -> RecordingJobQueue:
    return RecordingJobQueue()


@pytest.fixture
def vector_store(fake_repository, fake_embedder, test_settings) -> VectorStore:
    return VectorStore(fake_repository, embedder=fake_embedder, settings=test_settings)


@pytest.fixture
def respx_mock():
    """Respx router for HTTP mocking. Unmatched requests fail; unused routes are allowed."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def mock_supabase_client():
    """MagicMock Supabase client; every query-builder call returns the builder.

    Set `client.result.data` / `client.result.count` to control what
    execute() returns.
    """
    client = MagicMock()
    builder = MagicMock()
    result = MagicMock()
    result.data = []
    result.count = 0

    for method in ("select", "insert", "update", "upsert", "delete", "eq", "in_", "or_", "order", "range"):
        getattr(builder, method).return_value = builder
    builder.execute.return_value = result

    client.table.return_value = builder
    client.rpc.return_value = builder
    client.builder = builder
    client.result = result
    return client


@pytest.fixture
def logfire_capture():
    """
    Capture Logfire logs for testing.

    This fixture patches Logfire to capture log calls for assertion.
    """
    captured_logs = []

    original_info = logfire.info
    original_warning = logfire.warning
    original_error = logfire.error

    def capture_info(*args, **kwargs):
        captured_logs.append(("info", args, kwargs))
        return original_info(*args, **kwargs)

    def capture_warning(*args, **kwargs):
        captured_logs.append(("warning", args, kwargs))
        return original_warning(*args, **kwargs)

    def capture_error(*args, **kwargs):
        captured_logs.append(("error", args, kwargs))
        return original_error(*args, **kwargs)

    logfire.info = capture_info
    logfire.warning = capture_warning
    logfire.error = capture_error

    yield captured_logs

    logfire.info = original_info
    logfire.warning = original_warning
    logfire.error = original_error
