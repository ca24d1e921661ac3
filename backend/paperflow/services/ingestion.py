"""
Document Ingestion Service — the upload orchestrator.

Orchestrates one upload:
  1. Validate and build the NewDocument aggregate (name, size, title, tags)
  2. Persist the document record (own transaction, committed)
  3. Write the blob under {document_id}{extension}
       on failure: delete the record from step 2 exactly once (compensation)
       and re-raise the write error to the caller
  4. Publish the ExtractionJob that starts the pipeline
  5. Return an UploadResult

Invariants enforced here:
  - A committed document record always has a blob, except when the
    compensating delete itself fails. That case raises CompensationFailure
    and logs a CRITICAL "Compensation failed" line for operators.
  - Cancelling the upload during the blob write runs the same
    compensation (shielded from the cancellation) before the
    CancelledError propagates.
  - The blob write is never retried here; the caller may resubmit.
  - A failed publish does not undo the upload. The document and its blob
    both exist; the result reports published=False.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import BinaryIO, Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paperflow.core.exceptions import (
    CompensationFailure,
    DocumentNotFoundError,
    TransientInfrastructureError,
)
from paperflow.db.session import session_scope
from paperflow.messaging.publisher import PipelinePublisher
from paperflow.repositories.documents import DocumentRepository
from paperflow.schemas.documents import NewDocument
from paperflow.storage.blobs import BlobStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    document_id: uuid.UUID
    blob_key:    str
    tags:        tuple[str, ...]
    published:   bool


class IngestionService:
    """
    Stateless service object.
    All dependencies are injected (testable, no hidden globals).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage:         BlobStore,
        publisher:       PipelinePublisher,
    ) -> None:
        self._sessions  = session_factory
        self._storage   = storage
        self._publisher = publisher

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def upload(
        self,
        *,
        name:         str,
        stream:       bytes | BinaryIO,
        length:       int,
        content_type: str,
        title:        str | None = None,
        tags:         Iterable[str] | None = None,
    ) -> UploadResult:
        """
        Raises ValidationError for bad input, the blob store's error when the
        write failed and was compensated, or CompensationFailure.
        """
        # ---- Step 1: Validate ------------------------------------------
        doc = NewDocument.create(
            name=name,
            content_type=content_type,
            size_bytes=length,
            title=title,
            tags=tags,
        )
        key = doc.blob_key

        logger.info(
            "Ingest start | doc=%s name=%s type=%s size=%d tags=%s",
            doc.id, doc.name, doc.content_type, doc.size_bytes, list(doc.tags),
        )

        # ---- Step 2: Persist the tentative record ----------------------
        async with session_scope(self._sessions) as session:
            await DocumentRepository(session).add(doc)

        # ---- Step 3: Write the blob, compensate on failure -------------
        try:
            await self._storage.put_blob(key, stream, length, doc.content_type)
        except Exception as write_error:
            logger.error(
                "Blob write failed | doc=%s key=%s error=%s", doc.id, key, write_error
            )
            await self._compensate(doc, write_error)
            raise
        except asyncio.CancelledError as cancelled:
            logger.warning("Blob write cancelled | doc=%s key=%s", doc.id, key)
            try:
                await asyncio.shield(self._compensate(doc, cancelled))
            except CompensationFailure:
                logger.critical("Upload cancelled with orphaned record | doc=%s", doc.id)
            raise

        # ---- Step 4: Start the pipeline --------------------------------
        published = True
        try:
            await self._publisher.publish_extraction_job(doc)
        except TransientInfrastructureError as exc:
            published = False
            logger.error(
                "Failed to publish extraction job | doc=%s error=%s", doc.id, exc
            )

        logger.info("Ingest done | doc=%s key=%s published=%s", doc.id, key, published)
        return UploadResult(
            document_id=doc.id,
            blob_key=key,
            tags=doc.tags,
            published=published,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _compensate(self, doc: NewDocument, write_error: BaseException) -> None:
        """Delete the record created in step 2. Called at most once per upload."""
        try:
            async with session_scope(self._sessions) as session:
                await DocumentRepository(session).delete(doc.id)
        except DocumentNotFoundError:
            logger.warning("Compensation found no record | doc=%s", doc.id)
            return
        except Exception as delete_error:
            logger.critical(
                "Compensation failed | doc=%s write_error=%s delete_error=%s",
                doc.id, write_error, delete_error,
            )
            raise CompensationFailure(doc.id, write_error, delete_error) from write_error

        logger.warning("Compensation executed | doc=%s", doc.id)
