"""
Summary Sink

Consumes SummaryMessage from queue_summary_in and stores the summary on the
existing document. An unknown id is skipped with a warning; this stage never
creates a document. Writing the same summary twice leaves the same state.
"""

from __future__ import annotations

import logging

from paperflow.core.config import Settings
from paperflow.core.exceptions import DocumentNotFoundError, PersistenceFailure, ValidationError
from paperflow.messaging.outcomes import (
    Failed,
    FailureKind,
    Handler,
    HandlerOutcome,
    Processed,
    Skipped,
)
from paperflow.schemas.messages import SummaryMessage
from paperflow.services.documents import DocumentService

logger = logging.getLogger(__name__)


class SummarySinkStage:
    name = "summary-sink"

    def __init__(self, documents: DocumentService, settings: Settings) -> None:
        self._documents = documents
        self._settings  = settings

    def handlers(self) -> dict[str, Handler]:
        return {self._settings.queue_summary_in: self.handle}

    async def handle(self, body: bytes) -> HandlerOutcome:
        try:
            msg = SummaryMessage.from_bytes(body)
        except ValidationError as exc:
            return Failed(FailureKind.MALFORMED, str(exc))

        try:
            stored = await self._documents.set_summary(msg.id, msg.summary)
        except DocumentNotFoundError:
            logger.warning("Summary for unknown document skipped | doc=%s", msg.id)
            return Skipped("unknown document")
        except PersistenceFailure as exc:
            return Failed(FailureKind.PERSISTENCE, str(exc))

        if not stored:
            return Skipped("blank summary")
        return Processed()
