"""
Access log parsing.

Input file shape:

    <accessStatistics>
      <event documentId="UUID" type="upload|update|download" at="ISO-8601"/>
      ...
    </accessStatistics>

Parsing is strict and whole-file: the first bad element raises ParseError and
nothing from the file is used. Events are folded into counts keyed by
(documentId, UTC calendar date, type).
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from uuid import UUID

from paperflow.core.exceptions import ParseError
from paperflow.repositories.access import ACCESS_TYPES

logger = logging.getLogger(__name__)

ROOT_ELEMENT  = "accessstatistics"
EVENT_ELEMENT = "event"


@dataclass(frozen=True)
class AccessKey:
    document_id: UUID
    day:         date
    access_type: str


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _attribute(element: ET.Element, name: str, index: int, path: str | None) -> str:
    value = element.get(name)
    if value is None or not value.strip():
        raise ParseError(f"event #{index}: missing attribute {name!r}", path=path)
    return value.strip()


def parse_timestamp(value: str) -> datetime:
    """ISO-8601 with an explicit offset, returned in UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ParseError(f"unparsable timestamp {value!r}") from exc
    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ParseError(f"timestamp {value!r} has no timezone offset")
    return parsed.astimezone(timezone.utc)


def parse_access_log(content: bytes | str, path: str | None = None) -> Counter[AccessKey]:
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ParseError(f"invalid XML: {exc}", path=path) from exc

    if _local_name(root.tag).lower() != ROOT_ELEMENT:
        raise ParseError(f"unexpected root element {_local_name(root.tag)!r}", path=path)

    counts: Counter[AccessKey] = Counter()
    events = [child for child in root if _local_name(child.tag) == EVENT_ELEMENT]

    for index, event in enumerate(events, start=1):
        raw_id = _attribute(event, "documentId", index, path)
        try:
            document_id = UUID(raw_id)
        except ValueError as exc:
            raise ParseError(f"event #{index}: invalid documentId {raw_id!r}", path=path) from exc

        access_type = _attribute(event, "type", index, path).lower()
        if access_type not in ACCESS_TYPES:
            raise ParseError(f"event #{index}: unknown type {access_type!r}", path=path)

        raw_at = _attribute(event, "at", index, path)
        try:
            at = parse_timestamp(raw_at)
        except ParseError as exc:
            raise ParseError(f"event #{index}: {exc}", path=path) from exc

        counts[AccessKey(document_id, at.date(), access_type)] += 1

    logger.debug("Access log parsed | file=%s events=%d keys=%d", path, len(events), len(counts))
    return counts


def parse_access_file(path: Path) -> Counter[AccessKey]:
    try:
        content = path.read_bytes()
    except OSError as exc:
        raise ParseError(f"cannot read file: {exc}", path=str(path)) from exc
    return parse_access_log(content, path=str(path))
