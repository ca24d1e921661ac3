"""
Application-side publishing — thin wrapper over BrokerContext.publish().

Injected into the upload orchestrator and the mutation service so both can
be tested with a mocked publisher. Queue names come from Settings.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID

from paperflow.core.config import Settings
from paperflow.messaging.broker import BrokerContext
from paperflow.schemas.messages import (
    ExtractionJob,
    IndexDelete,
    IndexPartialUpdate,
    PipelineMessage,
)

logger = logging.getLogger(__name__)


class PipelinePublisher:
    def __init__(self, broker: BrokerContext, settings: Settings) -> None:
        self._broker   = broker
        self._settings = settings

    async def publish_extraction_job(self, doc: Any) -> ExtractionJob:
        job = ExtractionJob.from_document(doc)
        await self._publish(self._settings.queue_extraction_in, job)
        return job

    async def publish_index_update(self, doc: Any) -> IndexPartialUpdate:
        update = IndexPartialUpdate.from_document(doc)
        await self._publish(self._settings.queue_index_update, update)
        return update

    async def publish_index_delete(self, document_id: UUID) -> IndexDelete:
        msg = IndexDelete(id=document_id)
        await self._publish(self._settings.queue_index_delete, msg)
        return msg

    async def _publish(self, queue_name: str, message: PipelineMessage) -> None:
        """
        kombu is synchronous; run the publish in a thread executor so the
        event loop is not blocked. Raises TransientInfrastructureError.
        """
        body = message.to_bytes()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._broker.publish, queue_name, body)
        logger.info(
            "Message published | queue=%s doc=%s type=%s",
            queue_name, message.id, type(message).__name__,
        )
