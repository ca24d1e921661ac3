"""
Stage Worker Entry Point

  python -m paperflow.workers <stage>

Each stage is a separate process. Startup order:
  1. Load Settings, configure logging
  2. Connect to the broker with bounded retry; declare every pipeline queue
  3. Check the stage's own dependencies (database ping, bucket)
  4. Consume until SIGINT/SIGTERM; the in-flight message finishes first

``sweep-tags`` is a one-shot maintenance command, not a consumer: it removes
tags no document references any more and exits.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Callable

from paperflow.core.config import Settings, get_settings
from paperflow.core.exceptions import PaperflowError
from paperflow.core.logging import setup_logging
from paperflow.db.session import check_db_health, create_engine, create_session_factory
from paperflow.llm.summarizer import GeminiSummarizer
from paperflow.messaging.broker import BrokerContext, StageConsumer, connect_with_retry
from paperflow.messaging.outcomes import Handler
from paperflow.processing.extractor import TextExtractor
from paperflow.search.elastic import SearchIndexClient
from paperflow.services.documents import DocumentService
from paperflow.storage.blobs import BlobStore
from paperflow.workers.extraction import ExtractionStage
from paperflow.workers.fanout import FanoutStage
from paperflow.workers.indexing import IndexingStage
from paperflow.workers.summarization import SummarizationStage
from paperflow.workers.summary_sink import SummarySinkStage

logger = logging.getLogger(__name__)

CONSUMER_STAGES = ("extraction", "fanout", "summarization", "summary-sink", "indexing")
STAGES = CONSUMER_STAGES + ("sweep-tags",)


def pipeline_queues(settings: Settings) -> list[str]:
    return [
        settings.queue_extraction_in,
        settings.queue_extraction_out,
        settings.queue_summarization_in,
        settings.queue_summary_in,
        settings.queue_index_in,
        settings.queue_index_update,
        settings.queue_index_delete,
    ]


# ---------------------------------------------------------------------------
# Stage wiring
# ---------------------------------------------------------------------------

async def _require_database(settings: Settings):
    engine = create_engine(settings)
    health = await check_db_health(engine)
    if health["status"] != "ok":
        logger.critical("Database health check failed at startup: %s", health)
        await engine.dispose()
        raise RuntimeError(f"DB unavailable: {health}")
    logger.info("Database: connected")
    return engine


async def build_handlers(
    stage: str,
    broker: BrokerContext,
    settings: Settings,
    cleanups: list[Callable],
) -> dict[str, Handler]:
    """Construct the stage's collaborators and return its queue → handler map."""
    if stage == "extraction":
        storage = BlobStore(settings)
        await storage.ensure_bucket()
        return ExtractionStage(broker, storage, TextExtractor.from_settings(settings), settings).handlers()

    if stage == "fanout":
        return FanoutStage(broker, settings).handlers()

    if stage == "summarization":
        summarizer = GeminiSummarizer(settings)
        cleanups.append(summarizer.aclose)
        if not summarizer.has_credentials:
            logger.warning("GEMINI_API_KEY is not set; every summary will be skipped")
        return SummarizationStage(broker, summarizer, settings).handlers()

    if stage == "summary-sink":
        engine = await _require_database(settings)
        cleanups.append(engine.dispose)
        documents = DocumentService(create_session_factory(engine))
        return SummarySinkStage(documents, settings).handlers()

    if stage == "indexing":
        index = SearchIndexClient(settings)
        cleanups.append(index.aclose)
        return IndexingStage(index, settings).handlers()

    raise ValueError(f"Unknown stage: {stage}")


async def sweep_tags(settings: Settings) -> list[str]:
    engine = await _require_database(settings)
    try:
        return await DocumentService(create_session_factory(engine)).sweep_tags()
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# Process lifecycle
# ---------------------------------------------------------------------------

def _install_signal_handlers(consumer: StageConsumer) -> None:
    def _stop(signum, frame) -> None:
        logger.info("Shutdown requested | signal=%s", signal.Signals(signum).name)
        consumer.should_stop = True

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)


def run_stage(stage: str, settings: Settings) -> None:
    loop = asyncio.new_event_loop()
    cleanups: list[Callable] = []

    with connect_with_retry(settings) as broker:
        broker.declare(*pipeline_queues(settings))
        handlers = loop.run_until_complete(build_handlers(stage, broker, settings, cleanups))

        consumer = StageConsumer(
            broker,
            stage,
            handlers,
            settings.failure_policy_for(stage),
            loop=loop,
        )
        _install_signal_handlers(consumer)
        try:
            consumer.run()
        finally:
            for cleanup in reversed(cleanups):
                loop.run_until_complete(cleanup())
            consumer.close()

    logger.info("Stage stopped | stage=%s", stage)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="paperflow-worker", description="Run one pipeline stage.")
    parser.add_argument("stage", choices=STAGES)
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings)
    logger.info("Starting stage | stage=%s env=%s", args.stage, settings.app_env)

    try:
        if args.stage == "sweep-tags":
            removed = asyncio.run(sweep_tags(settings))
            logger.info("Tag sweep finished | deleted=%d", len(removed))
        else:
            run_stage(args.stage, settings)
    except (PaperflowError, RuntimeError) as exc:
        logger.critical("Stage failed to start | stage=%s error=%s", args.stage, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
