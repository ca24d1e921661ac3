"""
Extraction Stage

Consumes ExtractionJob from queue_extraction_in:
  1. Decode the job (malformed → dropped)
  2. Download the blob {id}{extension} into a temporary directory
  3. Extract text by content type (processing.extractor)
  4. Publish ExtractionResult to queue_extraction_out

Fail-closed: an unsupported type, an empty result or an ExtractionFailure
publishes nothing. Nothing raised here reaches the consumer loop; every path
ends in a HandlerOutcome.

Duplicate delivery re-extracts and republishes the same result; every
downstream consumer tolerates that.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from paperflow.core.config import Settings
from paperflow.core.exceptions import (
    ExtractionFailure,
    TransientInfrastructureError,
    ValidationError,
)
from paperflow.core.logging import preview
from paperflow.messaging.broker import BrokerContext
from paperflow.messaging.outcomes import (
    Failed,
    FailureKind,
    Handler,
    HandlerOutcome,
    Processed,
    Skipped,
)
from paperflow.processing.extractor import TextExtractor, is_supported
from paperflow.schemas.documents import blob_key
from paperflow.schemas.messages import ExtractionJob, ExtractionResult
from paperflow.storage.blobs import BlobStore

logger = logging.getLogger(__name__)


class ExtractionStage:
    name = "extraction"

    def __init__(
        self,
        broker:    BrokerContext,
        storage:   BlobStore,
        extractor: TextExtractor,
        settings:  Settings,
    ) -> None:
        self._broker    = broker
        self._storage   = storage
        self._extractor = extractor
        self._settings  = settings

    def handlers(self) -> dict[str, Handler]:
        return {self._settings.queue_extraction_in: self.handle}

    async def handle(self, body: bytes) -> HandlerOutcome:
        try:
            job = ExtractionJob.from_bytes(body)
        except ValidationError as exc:
            return Failed(FailureKind.MALFORMED, str(exc))

        logger.info(
            "Extraction job | doc=%s name=%s type=%s size=%d",
            job.id, job.name, job.content_type, job.size_bytes,
        )
        if not is_supported(job.content_type):
            logger.warning("Unsupported content type | doc=%s type=%s", job.id, job.content_type)
            return Skipped(f"unsupported content type {job.content_type}")

        key = blob_key(job.id, job.content_type)
        try:
            with tempfile.TemporaryDirectory(prefix="paperflow-dl-") as tmp:
                local = await self._storage.download_to(key, Path(tmp) / key)
                extracted = await self._extractor.extract(local.read_bytes(), job.content_type)
        except FileNotFoundError:
            logger.warning("Blob missing, document likely deleted | doc=%s key=%s", job.id, key)
            return Skipped("blob not found")
        except TransientInfrastructureError as exc:
            logger.error("Blob fetch failed | doc=%s key=%s error=%s", job.id, key, exc)
            return Failed(FailureKind.EXTRACTION, f"blob fetch failed: {exc}")
        except ExtractionFailure as exc:
            logger.error("Extraction failed | doc=%s error=%s", job.id, exc)
            return Failed(FailureKind.EXTRACTION, str(exc))

        if extracted is None:
            return Skipped(f"unsupported content type {job.content_type}")
        if extracted.is_empty:
            logger.warning("No text extracted, skipping publish | doc=%s", job.id)
            return Skipped("no text extracted")

        logger.debug("Extracted text preview | doc=%s text=%s", job.id, preview(extracted.text))

        result = ExtractionResult.from_job(job, extracted.text)
        try:
            self._broker.publish(self._settings.queue_extraction_out, result.to_bytes())
        except TransientInfrastructureError as exc:
            return Failed(FailureKind.BROKER, str(exc))

        logger.info(
            "Extraction result published | doc=%s chars=%d queue=%s",
            job.id, len(extracted.text), self._settings.queue_extraction_out,
        )
        return Processed()
