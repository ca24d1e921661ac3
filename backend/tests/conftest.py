"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : settings, db_engine, session_factory, mock_storage,
                    mock_publisher, broker, sample bytes

Environment strategy:
  - The relational store is an in-memory SQLite database (aiosqlite) with a
    StaticPool, so every session in one test sees the same data.
  - The broker is kombu's memory:// transport. Its queues are shared per
    process, so every test gets uniquely suffixed queue names.
  - S3 and HTTP collaborators are mocks (MagicMock / httpx.MockTransport).

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # in-process pipeline wiring
"""

from __future__ import annotations

import os
import uuid
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ─────────────────────────────────────────────────────────────────────────────
# Environment BEFORE any paperflow imports so Settings() never fails
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BROKER_URL",   "memory://")
os.environ.setdefault("S3_BUCKET",    "test-bucket")
os.environ.setdefault("APP_ENV",      "development")

from paperflow.core.config import Settings  # noqa: E402
from paperflow.db.session import create_all, create_session_factory  # noqa: E402
from paperflow.messaging.broker import BrokerContext  # noqa: E402
from paperflow.messaging.publisher import PipelinePublisher  # noqa: E402
from paperflow.storage.blobs import BlobStore  # noqa: E402


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with unique queue names and batch directories under tmp_path."""
    suffix = uuid.uuid4().hex[:8]
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        broker_url="memory://",
        s3_bucket="test-bucket",
        rabbitmq_connection_retries=2,
        rabbitmq_connection_retry_delay_seconds=0,
        queue_extraction_in=f"test.ocr.in.{suffix}",
        queue_extraction_out=f"test.ocr.out.{suffix}",
        queue_summarization_in=f"test.genai.in.{suffix}",
        queue_summary_in=f"test.summary.in.{suffix}",
        queue_index_in=f"test.index.in.{suffix}",
        queue_index_update=f"test.index.update.{suffix}",
        queue_index_delete=f"test.index.delete.{suffix}",
        gemini_api_key="test-gemini-key",
        gemini_retry_delay_ms=0,
        batch_input_dir=str(tmp_path / "BatchInput"),
        batch_archive_dir=str(tmp_path / "BatchArchive"),
        batch_error_dir=str(tmp_path / "BatchError"),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Relational store — in-memory SQLite
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    return create_session_factory(db_engine)


# ─────────────────────────────────────────────────────────────────────────────
# Mock blob store
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_storage():
    """
    Fully mocked BlobStore.
    All methods are AsyncMock — no real S3 calls made.
    """
    storage = MagicMock(spec=BlobStore)
    storage.put_blob    = AsyncMock(return_value=None)
    storage.get_blob    = AsyncMock(return_value=b"file content")
    storage.delete_blob = AsyncMock(return_value=None)
    storage.exists_blob = AsyncMock(return_value=True)

    async def _download_to(key, path):
        path.write_bytes(await storage.get_blob(key))
        return path

    storage.download_to = AsyncMock(side_effect=_download_to)
    return storage


# ─────────────────────────────────────────────────────────────────────────────
# Mock publisher
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_publisher():
    """Mocked PipelinePublisher — records calls without touching the broker."""
    publisher = MagicMock(spec=PipelinePublisher)
    publisher.publish_extraction_job = AsyncMock(return_value=None)
    publisher.publish_index_update   = AsyncMock(return_value=None)
    publisher.publish_index_delete   = AsyncMock(return_value=None)
    return publisher


# ─────────────────────────────────────────────────────────────────────────────
# In-memory broker
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def broker(settings):
    """A BrokerContext on kombu's memory transport with every queue declared."""
    from kombu import Connection

    ctx = BrokerContext(Connection("memory://"))
    ctx.declare(
        settings.queue_extraction_in,
        settings.queue_extraction_out,
        settings.queue_summarization_in,
        settings.queue_summary_in,
        settings.queue_index_in,
        settings.queue_index_update,
        settings.queue_index_delete,
    )
    yield ctx
    ctx.close()


@pytest.fixture
def drain():
    """Return every raw body currently waiting in a queue (memory transport)."""

    def _drain(broker: BrokerContext, queue_name: str) -> list[bytes]:
        bodies: list[bytes] = []
        simple = broker.connection.SimpleQueue(broker.queue(queue_name))
        try:
            while True:
                try:
                    message = simple.get(block=False)
                except simple.Empty:
                    break
                bodies.append(message.body)
                message.ack()
        finally:
            simple.close()
        return bodies

    return _drain


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal PDF header; never rendered, only carried around."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
        b"trailer\n<< /Root 1 0 R >>\n%%EOF\n"
    )


@pytest.fixture
def sample_txt_bytes() -> bytes:
    return b"Invoice 2026-001\nTotal due: 120.00 EUR\n"
