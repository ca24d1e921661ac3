"""Daily access aggregates: absolute upsert, never accumulation."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paperflow.core.exceptions import PersistenceFailure, ValidationError
from paperflow.models.documents import DocumentDailyAccess

logger = logging.getLogger(__name__)

ACCESS_TYPES: frozenset[str] = frozenset({"upload", "update", "download"})


class DailyAccessRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(
        self,
        document_id: UUID,
        day: date,
        access_type: str,
    ) -> DocumentDailyAccess | None:
        return await self._session.get(
            DocumentDailyAccess,
            (document_id, day, access_type.strip().lower()),
        )

    async def upsert_absolute(
        self,
        document_id: UUID,
        day: date,
        access_type: str,
        count: int,
    ) -> DocumentDailyAccess:
        """
        Insert the aggregate, or overwrite the stored count if the key exists.
        Running it twice with the same count leaves the same state.
        """
        kind = access_type.strip().lower()
        if not kind:
            raise ValidationError("Access type must not be blank", field="access_type")
        if kind not in ACCESS_TYPES:
            raise ValidationError(f"Unknown access type {kind!r}", field="access_type")
        if count < 0:
            raise ValidationError("Access count must not be negative", field="count")

        row = await self.get(document_id, day, kind)
        if row is None:
            row = DocumentDailyAccess(
                document_id=document_id, day=day, access_type=kind, count=count
            )
            self._session.add(row)
        else:
            row.count = count

        try:
            await self._session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(
                f"Upsert failed for doc={document_id} day={day} type={kind}"
            ) from exc

        logger.debug(
            "Access upsert | doc=%s day=%s type=%s count=%d",
            document_id, day, kind, count,
        )
        return row
