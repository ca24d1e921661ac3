"""
Document mutation service — metadata update, delete and summary write-back.

Each mutation runs in one transaction that also runs the tag GC for any tag
the document stopped referencing. Index messages are published only after
that transaction committed.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paperflow.core.exceptions import TransientInfrastructureError
from paperflow.db.session import session_scope
from paperflow.messaging.publisher import PipelinePublisher
from paperflow.repositories.documents import DocumentRepository
from paperflow.repositories.tags import TagGarbageCollector
from paperflow.schemas.documents import DocumentUpdate, blob_key
from paperflow.schemas.messages import IndexPartialUpdate
from paperflow.storage.blobs import BlobStore

logger = logging.getLogger(__name__)


class DocumentService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage:         BlobStore | None = None,
        publisher:       PipelinePublisher | None = None,
    ) -> None:
        self._sessions  = session_factory
        self._storage   = storage
        self._publisher = publisher

    async def update_document(self, document_id: UUID, update: DocumentUpdate) -> IndexPartialUpdate:
        """Raises DocumentNotFoundError if the id is unknown."""
        async with session_scope(self._sessions) as session:
            row = await DocumentRepository(session).update(document_id, update)
            snapshot = IndexPartialUpdate.from_document(row)

        logger.info(
            "Document updated | doc=%s name=%s tags=%s",
            document_id, snapshot.name, snapshot.tags,
        )
        if self._publisher is not None:
            await self._publisher.publish_index_update(snapshot)
        return snapshot

    async def delete_document(self, document_id: UUID) -> None:
        """Raises DocumentNotFoundError if the id is unknown."""
        async with session_scope(self._sessions) as session:
            row = await DocumentRepository(session).delete(document_id)
            key = blob_key(row.id, row.content_type)

        logger.info("Document deleted | doc=%s", document_id)
        if self._publisher is not None:
            try:
                await self._publisher.publish_index_delete(document_id)
            except TransientInfrastructureError as exc:
                logger.error("Failed to publish index delete | doc=%s error=%s", document_id, exc)

        if self._storage is not None:
            try:
                await self._storage.delete_blob(key)
            except TransientInfrastructureError as exc:
                # record is gone; a later delete of the same key is a no-op
                logger.error(
                    "Blob delete failed | doc=%s key=%s error=%s", document_id, key, exc
                )

    async def set_summary(self, document_id: UUID, summary: str) -> bool:
        """
        Store the summary on an existing document. Returns False when the
        summary is blank; raises DocumentNotFoundError for an unknown id.
        """
        if not summary or not summary.strip():
            logger.warning("Blank summary skipped | doc=%s", document_id)
            return False

        async with session_scope(self._sessions) as session:
            await DocumentRepository(session).set_summary(document_id, summary.strip())
        logger.info("Summary stored | doc=%s chars=%d", document_id, len(summary))
        return True

    async def sweep_tags(self) -> list[str]:
        async with session_scope(self._sessions) as session:
            return await TagGarbageCollector().sweep(session)
