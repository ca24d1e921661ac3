"""
Unit Tests — GeminiSummarizer and SearchIndexClient
════════════════════════════════════════════════════
HTTP is served by httpx.MockTransport; nothing leaves the process.

Coverage:
  ✅ Gemini request shape (URL, API key header, prompt)
  ✅ 5xx / 429 retried up to gemini_max_retries with a fixed delay
  ✅ other 4xx not retried
  ✅ missing candidate text → None
  ✅ index upsert / partial merge / delete request shapes
  ✅ delete of an id not in the index (404) succeeds
  ✅ non-2xx index response → PersistenceFailure
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import httpx
import pytest

from paperflow.core.exceptions import (
    PermanentExternalAPIError,
    PersistenceFailure,
    TransientExternalAPIError,
)
from paperflow.llm.summarizer import PROMPT, GeminiSummarizer
from paperflow.schemas.messages import ExtractionResult, IndexPartialUpdate
from paperflow.search.elastic import SearchIndexClient


def _gemini_ok(text: str = "A summary.") -> httpx.Response:
    return httpx.Response(
        200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
    )


def _summarizer(settings, handler, sleeps: list | None = None) -> GeminiSummarizer:
    async def _sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiSummarizer(settings, client=client, sleep=_sleep)


@pytest.mark.unit
class TestGeminiSummarizer:

    async def test_request_shape(self, settings):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _gemini_ok("  A summary.  ")

        summary = await _summarizer(settings, handler).summarize("Document body")

        assert summary == "A summary."
        request = seen[0]
        assert request.url.path.endswith(f"/models/{settings.gemini_model}:generateContent")
        assert request.headers["x-goog-api-key"] == "test-gemini-key"
        payload = json.loads(request.content)
        assert payload["contents"][0]["parts"][0]["text"] == PROMPT + "Document body"

    async def test_transient_errors_retried_then_succeed(self, settings):
        responses = iter([httpx.Response(503), httpx.Response(429), _gemini_ok()])
        sleeps: list[float] = []

        summary = await _summarizer(settings, lambda r: next(responses), sleeps).summarize("x")

        assert summary == "A summary."
        assert sleeps == [0.0, 0.0]

    async def test_retries_bounded(self, settings):
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(500, text="boom")

        with pytest.raises(TransientExternalAPIError) as exc_info:
            await _summarizer(settings, handler).summarize("x")

        assert len(calls) == settings.gemini_max_retries
        assert exc_info.value.status_code == 500

    async def test_transport_error_is_transient(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientExternalAPIError):
            await _summarizer(settings, handler).summarize("x")

    async def test_client_error_not_retried(self, settings):
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(400, json={"error": "bad request"})

        with pytest.raises(PermanentExternalAPIError):
            await _summarizer(settings, handler).summarize("x")
        assert len(calls) == 1

    async def test_missing_key_is_permanent(self, settings):
        settings.gemini_api_key = ""
        summarizer = _summarizer(settings, lambda r: _gemini_ok())
        assert summarizer.has_credentials is False
        with pytest.raises(PermanentExternalAPIError):
            await summarizer.summarize("x")

    async def test_no_candidates_returns_none(self, settings):
        summary = await _summarizer(
            settings, lambda r: httpx.Response(200, json={"candidates": []})
        ).summarize("x")
        assert summary is None


# ─────────────────────────────────────────────────────────────────────────────
# Search index
# ─────────────────────────────────────────────────────────────────────────────

def _index_client(settings, handler) -> SearchIndexClient:
    client = httpx.AsyncClient(
        base_url="http://elasticsearch:9200", transport=httpx.MockTransport(handler)
    )
    return SearchIndexClient(settings, client=client)


@pytest.mark.unit
class TestSearchIndexClient:

    async def test_upsert_writes_full_document(self, settings):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"result": "created"})

        msg = ExtractionResult(
            id=uuid.uuid4(),
            name="a.pdf",
            content_type="application/pdf",
            size_bytes=10,
            uploaded_at=datetime(2026, 1, 10, tzinfo=timezone.utc),
            tags=["tax"],
            text="full text",
        )
        await _index_client(settings, handler).upsert(msg)

        request = seen[0]
        assert request.method == "PUT"
        assert request.url.path == f"/documents/_doc/{msg.id}"
        body = json.loads(request.content)
        assert body["text"] == "full text"
        assert body["contentType"] == "application/pdf"
        assert body["tags"] == ["tax"]

    async def test_partial_update_never_touches_text(self, settings):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"result": "updated"})

        msg = IndexPartialUpdate(id=uuid.uuid4(), name="b.pdf", title=None, tags=[])
        await _index_client(settings, handler).partial_update(msg)

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == f"/documents/_update/{msg.id}"
        assert json.loads(request.content) == {"doc": {"name": "b.pdf", "title": None, "tags": []}}

    async def test_delete_of_missing_document_succeeds(self, settings):
        client = _index_client(
            settings, lambda r: httpx.Response(404, json={"result": "not_found"})
        )
        await client.delete(uuid.uuid4())

    async def test_server_error_is_persistence_failure(self, settings):
        client = _index_client(settings, lambda r: httpx.Response(500, text="boom"))
        with pytest.raises(PersistenceFailure):
            await client.delete(uuid.uuid4())

    async def test_update_of_missing_document_fails(self, settings):
        client = _index_client(settings, lambda r: httpx.Response(404))
        msg = IndexPartialUpdate(id=uuid.uuid4(), name="b.pdf")
        with pytest.raises(PersistenceFailure):
            await client.partial_update(msg)
