"""
Document domain values — validation rules and the blob key scheme.

Covers everything the upload orchestrator and the mutation service check
before touching storage:
  - name, title, size and content-type bounds
  - tag normalization (lower-cased, trimmed, de-duplicated)
  - the fixed content-type → blob extension table

Design decisions:
  - document ids are always generated here (UUID4); never client-supplied.
  - uploaded_at is always timezone-aware UTC.
  - pydantic's own ValidationError never leaves this module; callers only
    ever see paperflow.core.exceptions.ValidationError.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from paperflow.core.exceptions import ValidationError

# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------

MAX_NAME_LENGTH: int = 127
MAX_TITLE_LENGTH: int = 100
MIN_TAG_LENGTH: int = 2
MAX_TAG_LENGTH: int = 30

# 50 MB hard ceiling
MAX_FILE_SIZE_BYTES: int = 50 * 1024 * 1024


# ---------------------------------------------------------------------------
# Content-type → blob extension
# ---------------------------------------------------------------------------

_EXTENSIONS: dict[str, str] = {
    "application/pdf": ".pdf",
    "image/png":       ".png",
    "image/jpeg":      ".jpg",
    "image/jpg":       ".jpg",
    "image/tiff":      ".tiff",
    "image/bmp":       ".bmp",
    "text/plain":      ".txt",
}

DEFAULT_EXTENSION = ".bin"


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type.strip().lower(), DEFAULT_EXTENSION)


def blob_key(document_id: uuid.UUID, content_type: str) -> str:
    """Deterministic object key, e.g. ``3f2c…e1.pdf``."""
    return f"{document_id}{extension_for(content_type)}"


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def normalize_tag(raw: str) -> str:
    tag = raw.strip().lower()
    if not tag:
        raise ValidationError("Tag names must not be blank", field="tags")
    if not MIN_TAG_LENGTH <= len(tag) <= MAX_TAG_LENGTH:
        raise ValidationError(
            f"Tag {tag!r} must be between {MIN_TAG_LENGTH} and "
            f"{MAX_TAG_LENGTH} characters",
            field="tags",
        )
    return tag


def normalize_tags(raw_tags: Iterable[str] | None) -> list[str]:
    """
    Lower-case, trim and de-duplicate, keeping first-seen order.

    >>> normalize_tags(["Invoice", " invoice ", "Important"])
    ['invoice', 'important']
    """
    seen: dict[str, None] = {}
    for raw in raw_tags or ():
        seen.setdefault(normalize_tag(raw), None)
    return list(seen)


# ---------------------------------------------------------------------------
# Field validators shared by NewDocument and DocumentUpdate
# ---------------------------------------------------------------------------

def _check_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise ValueError("Document name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Document name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _check_title(value: str | None) -> str | None:
    if value is None:
        return None
    title = value.strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValueError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return title or None


def _domain_error(exc: pydantic.ValidationError) -> ValidationError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    message = first.get("msg", str(exc)).removeprefix("Value error, ")
    return ValidationError(message, field=field)


# ---------------------------------------------------------------------------
# NewDocument — the validated upload aggregate
# ---------------------------------------------------------------------------

class NewDocument(BaseModel):
    """
    A document that passed every upload rule and has not been stored yet.

    Build it with :meth:`create`, which reports failures as
    :class:`paperflow.core.exceptions.ValidationError`.
    """

    model_config = ConfigDict(frozen=True)

    id:           uuid.UUID      = Field(default_factory=uuid.uuid4)
    name:         str
    content_type: str
    size_bytes:   int            = Field(..., ge=1, le=MAX_FILE_SIZE_BYTES)
    uploaded_at:  datetime       = Field(default_factory=lambda: datetime.now(timezone.utc))
    title:        str | None     = None
    tags:         tuple[str, ...] = ()

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("title")
    @classmethod
    def _title(cls, v: str | None) -> str | None:
        return _check_title(v)

    @field_validator("content_type")
    @classmethod
    def _content_type(cls, v: str) -> str:
        content_type = v.strip().lower()
        if not content_type:
            raise ValueError("Content type must not be empty")
        return content_type

    @classmethod
    def create(
        cls,
        *,
        name: str,
        content_type: str,
        size_bytes: int,
        title: str | None = None,
        tags: Iterable[str] | None = None,
        **extra: Any,
    ) -> "NewDocument":
        normalized = tuple(normalize_tags(tags))
        try:
            return cls(
                name=name,
                content_type=content_type,
                size_bytes=size_bytes,
                title=title,
                tags=normalized,
                **extra,
            )
        except pydantic.ValidationError as exc:
            raise _domain_error(exc) from exc

    @property
    def blob_key(self) -> str:
        return blob_key(self.id, self.content_type)


# ---------------------------------------------------------------------------
# DocumentUpdate — metadata mutation
# ---------------------------------------------------------------------------

class DocumentUpdate(BaseModel):
    """
    None leaves a field unchanged; ``tags=[]`` clears every tag.
    Pass ``title=""`` to clear the title.
    """

    model_config = ConfigDict(frozen=True)

    name:  str | None             = None
    title: str | None             = None
    tags:  tuple[str, ...] | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str | None) -> str | None:
        return None if v is None else _check_name(v)

    @field_validator("title")
    @classmethod
    def _title(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return _check_title(v) or ""

    @classmethod
    def create(
        cls,
        *,
        name: str | None = None,
        title: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> "DocumentUpdate":
        normalized = None if tags is None else tuple(normalize_tags(tags))
        try:
            return cls(name=name, title=title, tags=normalized)
        except pydantic.ValidationError as exc:
            raise _domain_error(exc) from exc
