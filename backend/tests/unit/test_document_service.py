"""
Unit Tests — DocumentService (update / delete / summary write-back)
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from paperflow.core.exceptions import DocumentNotFoundError, TransientInfrastructureError
from paperflow.db.session import session_scope
from paperflow.models.documents import Document, Tag
from paperflow.repositories import DocumentRepository
from paperflow.schemas.documents import DocumentUpdate, NewDocument
from paperflow.services.documents import DocumentService


@pytest.fixture
def service(session_factory, mock_storage, mock_publisher) -> DocumentService:
    return DocumentService(session_factory, mock_storage, mock_publisher)


@pytest.fixture
async def stored_doc(session_factory) -> NewDocument:
    doc = NewDocument.create(
        name="invoice.pdf",
        content_type="application/pdf",
        size_bytes=1024,
        title="Invoice",
        tags=["invoice", "important"],
    )
    async with session_scope(session_factory) as session:
        await DocumentRepository(session).add(doc)
    return doc


@pytest.mark.unit
class TestUpdateDocument:

    async def test_update_publishes_partial_update(self, service, stored_doc, mock_publisher):
        snapshot = await service.update_document(
            stored_doc.id, DocumentUpdate.create(name="paid.pdf", tags=["invoice"])
        )

        assert snapshot.id == stored_doc.id
        assert snapshot.name == "paid.pdf"
        assert snapshot.title == "Invoice"
        assert snapshot.tags == ["invoice"]
        mock_publisher.publish_index_update.assert_awaited_once_with(snapshot)

    async def test_update_collects_dropped_tag(self, service, stored_doc, session_factory):
        await service.update_document(stored_doc.id, DocumentUpdate.create(tags=["invoice"]))

        async with session_scope(session_factory) as session:
            names = set((await session.scalars(select(Tag.name))).all())
        assert names == {"invoice"}

    async def test_update_unknown_document(self, service, mock_publisher):
        with pytest.raises(DocumentNotFoundError):
            await service.update_document(uuid.uuid4(), DocumentUpdate.create(name="x.pdf"))
        mock_publisher.publish_index_update.assert_not_called()


@pytest.mark.unit
class TestDeleteDocument:

    async def test_delete_removes_row_publishes_and_deletes_blob(
        self, service, stored_doc, session_factory, mock_publisher, mock_storage
    ):
        await service.delete_document(stored_doc.id)

        mock_publisher.publish_index_delete.assert_awaited_once_with(stored_doc.id)
        mock_storage.delete_blob.assert_awaited_once_with(f"{stored_doc.id}.pdf")
        async with session_scope(session_factory) as session:
            assert await session.get(Document, stored_doc.id) is None
            assert (await session.scalars(select(Tag.name))).all() == []

    async def test_blob_delete_failure_is_logged_not_raised(
        self, service, stored_doc, mock_storage
    ):
        mock_storage.delete_blob = AsyncMock(side_effect=TransientInfrastructureError("S3 down"))
        await service.delete_document(stored_doc.id)


@pytest.mark.unit
class TestSetSummary:

    async def test_summary_stored(self, service, stored_doc, session_factory):
        assert await service.set_summary(stored_doc.id, "  A short summary.  ") is True

        async with session_scope(session_factory) as session:
            row = await session.get(Document, stored_doc.id)
            assert row.summary == "A short summary."

    async def test_same_summary_twice_is_idempotent(self, service, stored_doc, session_factory):
        await service.set_summary(stored_doc.id, "Same.")
        await service.set_summary(stored_doc.id, "Same.")

        async with session_scope(session_factory) as session:
            row = await session.get(Document, stored_doc.id)
            assert row.summary == "Same."

    async def test_blank_summary_skipped(self, service, stored_doc):
        assert await service.set_summary(stored_doc.id, "   ") is False

    async def test_unknown_document_never_created(self, service, session_factory):
        missing = uuid.uuid4()
        with pytest.raises(DocumentNotFoundError):
            await service.set_summary(missing, "Summary.")
        async with session_scope(session_factory) as session:
            assert await session.get(Document, missing) is None


@pytest.mark.unit
async def test_sweep_tags(session_factory):
    async with session_scope(session_factory) as session:
        session.add(Tag(name="orphan"))
    assert await DocumentService(session_factory).sweep_tags() == ["orphan"]
