"""
Document repository — the narrow read/extend surface the pipeline needs.

Every method works inside the caller's session; the caller owns the
transaction (see db.session.session_scope). Mutations that shrink a
document's tag set run the tag GC before returning, in that same transaction.
"""

from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paperflow.core.exceptions import DocumentNotFoundError, PersistenceFailure
from paperflow.models.documents import Document, Tag, document_tags
from paperflow.repositories.tags import TagGarbageCollector
from paperflow.schemas.documents import DocumentUpdate, NewDocument

logger = logging.getLogger(__name__)


class DocumentRepository:
    def __init__(
        self,
        session: AsyncSession,
        gc: TagGarbageCollector | None = None,
    ) -> None:
        self._session = session
        self._gc      = gc or TagGarbageCollector()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, document_id: UUID) -> Document | None:
        return await self._session.get(Document, document_id)

    async def exists(self, document_id: UUID) -> bool:
        found = await self._session.scalar(
            select(Document.id).where(Document.id == document_id)
        )
        return found is not None

    async def get_tag_names(self, document_id: UUID) -> list[str]:
        rows = await self._session.scalars(
            select(document_tags.c.tag_name)
            .where(document_tags.c.document_id == document_id)
            .order_by(document_tags.c.tag_name)
        )
        return list(rows.all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, doc: NewDocument) -> Document:
        """Insert the document, reusing existing tag rows and creating missing ones."""
        row = Document(
            id=doc.id,
            name=doc.name,
            content_type=doc.content_type,
            size_bytes=doc.size_bytes,
            uploaded_at=doc.uploaded_at,
            title=doc.title,
        )
        row.tags = await self._resolve_tags(doc.tags)
        self._session.add(row)
        await self._flush("add", doc.id)
        return row

    async def update(self, document_id: UUID, update: DocumentUpdate) -> Document:
        row = await self._require(document_id)

        if update.name is not None:
            row.name = update.name
        if update.title is not None:
            row.title = update.title or None

        removed: list[str] = []
        if update.tags is not None:
            wanted = set(update.tags)
            removed = [name for name in row.tag_names if name not in wanted]
            row.tags = await self._resolve_tags(update.tags)

        await self._flush("update", document_id)
        if removed:
            await self._gc.collect(self._session, document_id, removed)
        return row

    async def delete(self, document_id: UUID) -> Document:
        """Delete the row and its associations, then collect its former tags."""
        row = await self._require(document_id)
        former_tags = row.tag_names

        await self._session.delete(row)
        await self._flush("delete", document_id)
        await self._gc.collect(self._session, document_id, former_tags)
        return row

    async def remove_tag(self, document_id: UUID, tag_name: str) -> bool:
        row = await self._require(document_id)
        kept = [tag for tag in row.tags if tag.name != tag_name]
        if len(kept) == len(row.tags):
            return False
        row.tags = kept
        await self._flush("remove_tag", document_id)
        await self._gc.collect(self._session, document_id, [tag_name])
        return True

    async def set_summary(self, document_id: UUID, summary: str) -> None:
        row = await self._require(document_id)
        row.summary = summary
        await self._flush("set_summary", document_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _require(self, document_id: UUID) -> Document:
        row = await self.get(document_id)
        if row is None:
            raise DocumentNotFoundError(document_id)
        return row

    async def _resolve_tags(self, names: Iterable[str]) -> list[Tag]:
        wanted = list(dict.fromkeys(names))
        if not wanted:
            return []
        existing = {
            tag.name: tag
            for tag in (
                await self._session.scalars(select(Tag).where(Tag.name.in_(wanted)))
            ).all()
        }
        return [existing.get(name) or Tag(name=name) for name in wanted]

    async def _flush(self, operation: str, document_id: UUID) -> None:
        try:
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "Document %s failed | doc=%s error=%s", operation, document_id, exc
            )
            raise PersistenceFailure(
                f"Document {operation} failed for {document_id}"
            ) from exc
