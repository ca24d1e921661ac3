"""
Fan-out Stage

One ExtractionResult in, the same bytes out to two queues:
  queue_extraction_out → queue_summarization_in
                       → queue_index_in

The body is validated but never re-serialized, so both branches see
byte-identical payloads. The upstream message is acked only after both
publishes returned.
"""

from __future__ import annotations

import logging

from paperflow.core.config import Settings
from paperflow.core.exceptions import TransientInfrastructureError, ValidationError
from paperflow.messaging.broker import BrokerContext
from paperflow.messaging.outcomes import Failed, FailureKind, Handler, HandlerOutcome, Processed
from paperflow.schemas.messages import ExtractionResult

logger = logging.getLogger(__name__)


class FanoutStage:
    name = "fanout"

    def __init__(self, broker: BrokerContext, settings: Settings) -> None:
        self._broker  = broker
        self._targets = (settings.queue_summarization_in, settings.queue_index_in)
        self._source  = settings.queue_extraction_out

    def handlers(self) -> dict[str, Handler]:
        return {self._source: self.handle}

    async def handle(self, body: bytes) -> HandlerOutcome:
        try:
            result = ExtractionResult.from_bytes(body)
        except ValidationError as exc:
            return Failed(FailureKind.MALFORMED, str(exc))

        for queue_name in self._targets:
            try:
                self._broker.publish(queue_name, body)
            except TransientInfrastructureError as exc:
                return Failed(FailureKind.BROKER, str(exc))

        logger.info("Fan-out | doc=%s targets=%s bytes=%d", result.id, list(self._targets), len(body))
        return Processed()
