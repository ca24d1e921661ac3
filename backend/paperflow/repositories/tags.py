"""
Tag reference-count garbage collector.

A tag row exists while at least one document references it through
document_tags. The count is never stored; it is derived by query every time.

collect() runs inline with the mutation that shrank a document's tag set,
inside the same session and transaction, after that change was flushed.

Consistency window:
  The orphan check is repeated inside the DELETE statement itself, so a tag
  is only removed if it is unreferenced at the moment the row is deleted.
  Two transactions dropping the last reference to the same tag may both try
  to delete it; the second matches no row. A transaction attaching the tag
  concurrently either commits first (our DELETE then skips the row) or hits
  the document_tags → tags foreign key and rolls back. A tag left
  unreferenced by such a race is removed by the next mutation touching it,
  or by sweep().
"""

from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy import delete, exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paperflow.core.exceptions import PersistenceFailure
from paperflow.models.documents import Tag, document_tags

logger = logging.getLogger(__name__)


class TagGarbageCollector:
    async def collect(
        self,
        session: AsyncSession,
        document_id: UUID,
        candidate_names: Iterable[str],
    ) -> list[str]:
        """
        Delete every candidate tag that no document other than
        ``document_id`` still references. Returns the deleted names.
        """
        candidates = sorted(set(candidate_names))
        if not candidates:
            return []

        unreferenced = ~exists().where(
            document_tags.c.tag_name == Tag.name,
            document_tags.c.document_id != document_id,
        )
        orphans = await self._delete_where(
            session, Tag.name.in_(candidates), unreferenced
        )
        if orphans:
            logger.info("Tag GC | doc=%s deleted=%s", document_id, orphans)
        return orphans

    async def sweep(self, session: AsyncSession) -> list[str]:
        """Delete every tag with zero references, regardless of origin."""
        unreferenced = ~exists().where(document_tags.c.tag_name == Tag.name)
        orphans = await self._delete_where(session, unreferenced)
        logger.info("Tag sweep | deleted=%d names=%s", len(orphans), orphans)
        return orphans

    @staticmethod
    async def _delete_where(session: AsyncSession, *criteria) -> list[str]:
        try:
            orphans = list(
                (await session.scalars(select(Tag.name).where(*criteria))).all()
            )
            if orphans:
                await session.execute(
                    delete(Tag)
                    .where(Tag.name.in_(orphans), *criteria)
                    .execution_options(synchronize_session="fetch")
                )
        except SQLAlchemyError as exc:
            raise PersistenceFailure("Tag garbage collection failed") from exc
        return sorted(orphans)
