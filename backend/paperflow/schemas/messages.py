"""
Pipeline message payloads — one JSON object per broker message body.

Wire keys are camelCase (``contentType``, ``sizeBytes``, ``uploadedAt``);
Python attributes stay snake_case. The document id correlates a message
across stages. Messages are immutable; a stage that needs a different shape
builds a new message from the one it consumed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from paperflow.core.exceptions import ValidationError

M = TypeVar("M", bound="PipelineMessage")


def _tag_names(doc: Any) -> list[str]:
    # ORM Document exposes tag_names; NewDocument carries plain strings in tags
    names = getattr(doc, "tag_names", None)
    return list(names if names is not None else doc.tags)


class PipelineMessage(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: uuid.UUID

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls: type[M], body: bytes | str) -> M:
        """Decode one message body; any schema mismatch is a ValidationError."""
        try:
            return cls.model_validate_json(body)
        except pydantic.ValidationError as exc:
            raise ValidationError(
                f"Malformed {cls.__name__} body: {exc.error_count()} error(s)"
            ) from exc


class _DocumentFields(PipelineMessage):
    name:         str
    content_type: str
    size_bytes:   int
    uploaded_at:  datetime
    tags:         list[str] = []

    @field_validator("uploaded_at")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ExtractionJob(_DocumentFields):
    """Start of the pipeline: emitted by the upload orchestrator."""

    @classmethod
    def from_document(cls, doc: Any) -> "ExtractionJob":
        return cls(
            id=doc.id,
            name=doc.name,
            content_type=doc.content_type,
            size_bytes=doc.size_bytes,
            uploaded_at=doc.uploaded_at,
            tags=_tag_names(doc),
        )


class ExtractionResult(_DocumentFields):
    """The job's metadata plus the extracted text."""

    text: str

    @classmethod
    def from_job(cls, job: ExtractionJob, text: str) -> "ExtractionResult":
        return cls(
            id=job.id,
            name=job.name,
            content_type=job.content_type,
            size_bytes=job.size_bytes,
            uploaded_at=job.uploaded_at,
            tags=list(job.tags),
            text=text,
        )


# The full index upsert consumes the extraction result as-is
IndexUpsert = ExtractionResult


class SummaryMessage(PipelineMessage):
    name:    str
    summary: str


class IndexPartialUpdate(PipelineMessage):
    name:  str
    title: str | None = None
    tags:  list[str] = []

    @classmethod
    def from_document(cls, doc: Any) -> "IndexPartialUpdate":
        return cls(id=doc.id, name=doc.name, title=doc.title, tags=_tag_names(doc))


class IndexDelete(PipelineMessage):
    pass
