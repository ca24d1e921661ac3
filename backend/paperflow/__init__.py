"""
paperflow — document processing pipeline.

  upload → blob store + relational record → extraction (OCR) → fan-out
         → {summarization → summary sink, indexing}

Each stage runs as its own process (``python -m paperflow.workers <stage>``);
the access-log aggregator runs separately (``python -m paperflow.batch``).
"""

__version__ = "0.1.0"
