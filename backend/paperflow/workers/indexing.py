"""
Indexing Stage — three queues, three idempotent operations:

  queue_index_in      IndexUpsert (= ExtractionResult)  → full upsert
  queue_index_update  IndexPartialUpdate                → partial merge
  queue_index_delete  IndexDelete                       → delete, 404 ok

Queues are independent, so an update and a later delete for the same
document may be applied in either order. There is no sequencing or
versioning; the last operation applied wins.
"""

from __future__ import annotations

import logging

from paperflow.core.config import Settings
from paperflow.core.exceptions import PersistenceFailure, ValidationError
from paperflow.messaging.outcomes import Failed, FailureKind, Handler, HandlerOutcome, Processed
from paperflow.schemas.messages import IndexDelete, IndexPartialUpdate, IndexUpsert
from paperflow.search.elastic import SearchIndexClient

logger = logging.getLogger(__name__)


class IndexingStage:
    name = "indexing"

    def __init__(self, index: SearchIndexClient, settings: Settings) -> None:
        self._index    = index
        self._settings = settings

    def handlers(self) -> dict[str, Handler]:
        s = self._settings
        return {
            s.queue_index_in:     self.handle_upsert,
            s.queue_index_update: self.handle_partial_update,
            s.queue_index_delete: self.handle_delete,
        }

    async def handle_upsert(self, body: bytes) -> HandlerOutcome:
        try:
            msg = IndexUpsert.from_bytes(body)
        except ValidationError as exc:
            return Failed(FailureKind.MALFORMED, str(exc))
        return await self._apply("upsert", msg.id, self._index.upsert(msg))

    async def handle_partial_update(self, body: bytes) -> HandlerOutcome:
        try:
            msg = IndexPartialUpdate.from_bytes(body)
        except ValidationError as exc:
            return Failed(FailureKind.MALFORMED, str(exc))
        return await self._apply("partial update", msg.id, self._index.partial_update(msg))

    async def handle_delete(self, body: bytes) -> HandlerOutcome:
        try:
            msg = IndexDelete.from_bytes(body)
        except ValidationError as exc:
            return Failed(FailureKind.MALFORMED, str(exc))
        return await self._apply("delete", msg.id, self._index.delete(msg.id))

    @staticmethod
    async def _apply(operation: str, document_id, call) -> HandlerOutcome:
        try:
            await call
        except PersistenceFailure as exc:
            logger.error("Index %s failed | doc=%s error=%s", operation, document_id, exc)
            return Failed(FailureKind.PERSISTENCE, str(exc))
        return Processed()
