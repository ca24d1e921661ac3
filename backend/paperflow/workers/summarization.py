"""
Summarization Stage

Consumes ExtractionResult from queue_summarization_in and publishes a
SummaryMessage to queue_summary_in.

Skips (ack, no publish) when:
  - the text is empty
  - no API key is configured (permanent, retrying cannot help)
  - the API rejected the request, or every bounded retry failed
  - the API answered without text

A skip never blocks the queue; the document simply has no summary.
"""

from __future__ import annotations

import logging

from paperflow.core.config import Settings
from paperflow.core.exceptions import (
    PermanentExternalAPIError,
    TransientExternalAPIError,
    TransientInfrastructureError,
    ValidationError,
)
from paperflow.llm.summarizer import GeminiSummarizer
from paperflow.messaging.broker import BrokerContext
from paperflow.messaging.outcomes import (
    Failed,
    FailureKind,
    Handler,
    HandlerOutcome,
    Processed,
    Skipped,
)
from paperflow.schemas.messages import ExtractionResult, SummaryMessage

logger = logging.getLogger(__name__)


class SummarizationStage:
    name = "summarization"

    def __init__(
        self,
        broker:     BrokerContext,
        summarizer: GeminiSummarizer,
        settings:   Settings,
    ) -> None:
        self._broker     = broker
        self._summarizer = summarizer
        self._settings   = settings

    def handlers(self) -> dict[str, Handler]:
        return {self._settings.queue_summarization_in: self.handle}

    async def handle(self, body: bytes) -> HandlerOutcome:
        try:
            msg = ExtractionResult.from_bytes(body)
        except ValidationError as exc:
            return Failed(FailureKind.MALFORMED, str(exc))

        if not msg.text.strip():
            logger.warning("Empty text, skipping summary | doc=%s", msg.id)
            return Skipped("empty text")
        if not self._summarizer.has_credentials:
            logger.warning("No Gemini API key configured, skipping summary | doc=%s", msg.id)
            return Skipped("missing API credentials")

        try:
            summary = await self._summarizer.summarize(msg.text)
        except PermanentExternalAPIError as exc:
            logger.error("Summary rejected by API | doc=%s error=%s", msg.id, exc)
            return Skipped("non-retryable API error")
        except TransientExternalAPIError as exc:
            logger.error("Summary retries exhausted | doc=%s error=%s", msg.id, exc)
            return Skipped("API retries exhausted")

        if not summary:
            return Skipped("empty summary")

        out = SummaryMessage(id=msg.id, name=msg.name, summary=summary)
        try:
            self._broker.publish(self._settings.queue_summary_in, out.to_bytes())
        except TransientInfrastructureError as exc:
            return Failed(FailureKind.BROKER, str(exc))

        logger.info("Summary published | doc=%s chars=%d", msg.id, len(summary))
        return Processed()
