"""Process-wide logging setup, called once by each entry point."""

from __future__ import annotations

import logging

from paperflow.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Longest slice of extracted text that is ever written to a log line
TEXT_PREVIEW_CHARS = 400


def setup_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.debug else getattr(
        logging, settings.log_level.upper(), logging.INFO
    )
    logging.basicConfig(level=level, format=LOG_FORMAT)

    # amqp and botocore are chatty at DEBUG
    for noisy in ("amqp", "botocore", "aiobotocore", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(level, logging.INFO))


def preview(text: str, limit: int = TEXT_PREVIEW_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
