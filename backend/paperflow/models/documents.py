"""
SQLAlchemy ORM Models — Documents, Tags & Daily Access Aggregates

Using SQLAlchemy mapped classes (2.x style) for full async support.

Tag reference counts are never stored. The document_tags association table is
the only source of truth; "who references tag X" is always answered by query
(see repositories/tags.py).

Schema ownership: the relational store owns these tables. The pipeline only
reads and extends them through the repositories in paperflow.repositories.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from paperflow.schemas.documents import (
    MAX_NAME_LENGTH,
    MAX_TAG_LENGTH,
    MAX_TITLE_LENGTH,
)


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Association table — document_tags
# ---------------------------------------------------------------------------

document_tags = Table(
    "document_tags",
    Base.metadata,
    Column(
        "document_id",
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tag_name",
        String(MAX_TAG_LENGTH),
        ForeignKey("tags.name"),
        primary_key=True,
    ),
    Index("idx_document_tags_tag_name", "tag_name"),
)


# ---------------------------------------------------------------------------
# Document model — documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded file. The blob lives in the object store under
    ``{id}{extension}``; this row is the metadata half of the pair.

    summary is NULL until the summarization branch of the pipeline finishes.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint("size_bytes > 0", name="documents_size_positive"),
        Index("idx_documents_uploaded_at", "uploaded_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str]         = mapped_column(String(MAX_NAME_LENGTH), nullable=False)
    content_type: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int]   = mapped_column(BigInteger, nullable=False)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    title: Mapped[Optional[str]]   = mapped_column(String(MAX_TITLE_LENGTH), nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tags: Mapped[list["Tag"]] = relationship(
        secondary=document_tags,
        lazy="selectin",
        order_by="Tag.name",
    )

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]

    def __repr__(self) -> str:
        return f"<Document id={self.id} name={self.name!r} type={self.content_type}>"


# ---------------------------------------------------------------------------
# Tag model — tags
# ---------------------------------------------------------------------------

class Tag(Base):
    """
    A normalized (lower-cased, trimmed) tag name. The name is the identity.

    No back-reference to documents: the reverse direction is a query over
    document_tags, never a cached collection.
    """

    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(MAX_TAG_LENGTH), primary_key=True)

    def __repr__(self) -> str:
        return f"<Tag {self.name!r}>"


# ---------------------------------------------------------------------------
# DocumentDailyAccess model — document_daily_access
# ---------------------------------------------------------------------------

class DocumentDailyAccess(Base):
    """
    Absolute count of one access type for one document on one UTC day.

    Written only by the batch access aggregator. Re-ingestion overwrites
    ``count``; it never accumulates across runs.
    """

    __tablename__ = "document_daily_access"
    __table_args__ = (
        CheckConstraint("count >= 0", name="document_daily_access_count_check"),
        CheckConstraint(
            "access_type IN ('upload', 'update', 'download')",
            name="document_daily_access_type_check",
        ),
    )

    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    day: Mapped[date]              = mapped_column("date", Date, primary_key=True)
    access_type: Mapped[str]       = mapped_column(String(16), primary_key=True)
    count: Mapped[int]             = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<DocumentDailyAccess doc={self.document_id} date={self.day} "
            f"type={self.access_type} count={self.count}>"
        )
