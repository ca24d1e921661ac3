"""
Batch Access Aggregator

One run:
  1. Ensure input / archive / error directories exist
  2. List files matching ``batch_file_pattern``, sorted by name
  3. Per file: parse the whole file, then upsert every aggregate in one
     transaction (absolute counts, so a re-run never doubles anything)
  4. Success → archive directory; ParseError or PersistenceFailure → error
     directory. A failed move is logged and the run continues.

Moving the file out of the input directory is the only exclusion mechanism;
overlapping runs over the same directory are not supported.

Daemon mode sleeps until the next configured HH:MM (UTC) and recomputes the
delay after every wake, so clock drift does not accumulate.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paperflow.batch.parser import parse_access_file
from paperflow.core.config import Settings
from paperflow.core.exceptions import ParseError, PersistenceFailure, ValidationError
from paperflow.db.session import session_scope
from paperflow.repositories.access import DailyAccessRepository

logger = logging.getLogger(__name__)

ARCHIVE_STAMP_FORMAT = "%Y%m%d%H%M%S"


@dataclass
class BatchRunReport:
    archived:    list[Path] = field(default_factory=list)
    quarantined: list[Path] = field(default_factory=list)
    move_failed: list[Path] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.archived) + len(self.quarantined) + len(self.move_failed)


def next_run_at(now: datetime, hour: int, minute: int) -> datetime:
    """First HH:MM (UTC) strictly after ``now``."""
    now = now.astimezone(timezone.utc)
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def target_path(directory: Path, source: Path, now: datetime) -> Path:
    """``{stem}-{YYYYmmddHHMMSS}{suffix}``, numbered if that name is taken."""
    stamp = now.strftime(ARCHIVE_STAMP_FORMAT)
    candidate = directory / f"{source.stem}-{stamp}{source.suffix}"
    counter = 1
    while candidate.exists():
        candidate = directory / f"{source.stem}-{stamp}-{counter}{source.suffix}"
        counter += 1
    return candidate


class AccessBatchJob:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._session_factory = session_factory
        self._settings    = settings
        self._clock       = clock
        self.input_dir    = Path(settings.batch_input_dir)
        self.archive_dir  = Path(settings.batch_archive_dir)
        self.error_dir    = Path(settings.batch_error_dir)

    def ensure_directories(self) -> None:
        for directory in (self.input_dir, self.archive_dir, self.error_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def pending_files(self) -> list[Path]:
        return sorted(
            (p for p in self.input_dir.glob(self._settings.batch_file_pattern) if p.is_file()),
            key=lambda p: p.name,
        )

    async def run_once(self) -> BatchRunReport:
        self.ensure_directories()
        report = BatchRunReport()
        files = self.pending_files()
        logger.info("Batch run started | dir=%s files=%d", self.input_dir, len(files))

        for path in files:
            ok = await self.process_file(path)
            destination = self.archive_dir if ok else self.error_dir
            moved = self._move(path, destination)
            if moved is None:
                report.move_failed.append(path)
            elif ok:
                report.archived.append(moved)
            else:
                report.quarantined.append(moved)

        logger.info(
            "Batch run finished | archived=%d quarantined=%d move_failed=%d",
            len(report.archived), len(report.quarantined), len(report.move_failed),
        )
        return report

    async def process_file(self, path: Path) -> bool:
        """Parse and persist one file. Returns False if it belongs in the error directory."""
        try:
            counts = parse_access_file(path)
        except ParseError as exc:
            logger.error("Access log rejected | file=%s error=%s", path.name, exc)
            return False

        try:
            async with session_scope(self._session_factory) as session:
                repo = DailyAccessRepository(session)
                for key, count in counts.items():
                    await repo.upsert_absolute(key.document_id, key.day, key.access_type, count)
        except (PersistenceFailure, ValidationError) as exc:
            logger.error("Access log persist failed | file=%s error=%s", path.name, exc)
            return False

        logger.info("Access log ingested | file=%s aggregates=%d", path.name, len(counts))
        return True

    def _move(self, source: Path, directory: Path) -> Path | None:
        target = target_path(directory, source, self._clock())
        try:
            shutil.move(str(source), str(target))
        except OSError as exc:
            logger.error("File move failed | file=%s target=%s error=%s", source, target, exc)
            return None
        logger.info("File moved | file=%s target=%s", source.name, target)
        return target

    async def run_forever(self, stop: asyncio.Event) -> None:
        hour, minute = self._settings.daily_run_time
        while not stop.is_set():
            now = self._clock()
            run_at = next_run_at(now, hour, minute)
            delay = (run_at - now).total_seconds()
            logger.info("Next batch run | at=%s in_seconds=%.0f", run_at.isoformat(), delay)

            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            if stop.is_set():
                break
            # Woken early by drift: loop recomputes the delay.
            if self._clock() < run_at:
                continue
            try:
                await self.run_once()
            except Exception:
                logger.exception("Batch run failed; waiting for the next slot")

        logger.info("Batch scheduler stopped")
