"""
python -m paperflow.batch [--daemon]

Run-once by default. ``--daemon`` or BATCH_SCHEDULE_ENABLED=true keeps the
process alive and runs daily at BATCH_DAILY_TIME_UTC.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from paperflow.batch.job import AccessBatchJob
from paperflow.core.config import Settings, get_settings
from paperflow.core.logging import setup_logging
from paperflow.db.session import check_db_health, create_engine, create_session_factory

logger = logging.getLogger(__name__)


async def _run(settings: Settings, daemon: bool) -> int:
    engine = create_engine(settings)
    try:
        health = await check_db_health(engine)
        if health["status"] != "ok":
            logger.critical("Database health check failed at startup: %s", health)
            return 1

        job = AccessBatchJob(create_session_factory(engine), settings)
        job.ensure_directories()

        if not daemon:
            report = await job.run_once()
            return 0 if not report.move_failed else 1

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await job.run_forever(stop)
        return 0
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="paperflow-batch-access",
        description="Aggregate access-log files into daily access counts.",
    )
    parser.add_argument("--daemon", action="store_true", help="run daily at the configured UTC time")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings)
    daemon = args.daemon or settings.batch_schedule_enabled
    logger.info("Batch access aggregator | mode=%s", "daemon" if daemon else "once")
    return asyncio.run(_run(settings, daemon))


if __name__ == "__main__":
    sys.exit(main())
