"""
Search Index Client — Elasticsearch document API over REST (httpx)

Operations (each idempotent):
  upsert          PUT    /{index}/_doc/{id}      full document, replaces any existing
  partial_update  POST   /{index}/_update/{id}   {"doc": {name, title, tags}} merge;
                                                 the indexed text is left untouched
  delete          DELETE /{index}/_doc/{id}      404 counts as success

Any other non-2xx response, or a transport error, is PersistenceFailure.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

import httpx

from paperflow.core.config import Settings
from paperflow.core.exceptions import PersistenceFailure
from paperflow.schemas.messages import IndexPartialUpdate, IndexUpsert

logger = logging.getLogger(__name__)


def upsert_body(msg: IndexUpsert) -> dict[str, Any]:
    return {
        "id":          str(msg.id),
        "name":        msg.name,
        "contentType": msg.content_type,
        "uploadedAt":  msg.uploaded_at.isoformat(),
        "sizeBytes":   msg.size_bytes,
        "text":        msg.text,
        "tags":        list(msg.tags),
    }


def partial_body(msg: IndexPartialUpdate) -> dict[str, Any]:
    return {"doc": {"name": msg.name, "title": msg.title, "tags": list(msg.tags)}}


class SearchIndexClient:
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._index  = settings.elasticsearch_index
        self._client = client or httpx.AsyncClient(
            base_url=settings.elasticsearch_url.rstrip("/"),
            timeout=settings.elasticsearch_timeout_seconds,
        )

    async def upsert(self, msg: IndexUpsert) -> None:
        await self._send("PUT", f"/{self._index}/_doc/{msg.id}", msg.id, json=upsert_body(msg))

    async def partial_update(self, msg: IndexPartialUpdate) -> None:
        await self._send(
            "POST", f"/{self._index}/_update/{msg.id}", msg.id, json=partial_body(msg)
        )

    async def delete(self, document_id: UUID) -> None:
        await self._send(
            "DELETE", f"/{self._index}/_doc/{document_id}", document_id, missing_ok=True
        )

    async def _send(
        self,
        method: str,
        path: str,
        document_id: UUID,
        *,
        json: dict[str, Any] | None = None,
        missing_ok: bool = False,
    ) -> None:
        try:
            resp = await self._client.request(method, path, json=json)
        except httpx.RequestError as exc:
            raise PersistenceFailure(f"{method} {path} failed: {exc}") from exc

        if missing_ok and resp.status_code == 404:
            logger.info("Index %s of missing doc treated as success | doc=%s", method, document_id)
            return
        if not resp.is_success:
            raise PersistenceFailure(
                f"{method} {path} returned HTTP {resp.status_code}: {resp.text[:300]}"
            )
        logger.info("Index %s ok | index=%s doc=%s", method, self._index, document_id)

    async def aclose(self) -> None:
        await self._client.aclose()
