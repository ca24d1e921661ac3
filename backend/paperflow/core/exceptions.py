"""
Error taxonomy for the document pipeline.

Adapters (blob store, broker, search index, summarizer, repositories) raise
these. Stage handlers convert them into HandlerOutcome values at the message
boundary; only the upload orchestrator lets them reach its caller.
"""

from __future__ import annotations

from uuid import UUID


class PaperflowError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(PaperflowError):
    """Bad input to the upload orchestrator or a document mutation."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class DocumentNotFoundError(PaperflowError):
    def __init__(self, document_id: UUID) -> None:
        super().__init__(f"A document with id {document_id} does not exist")
        self.document_id = document_id


class TransientInfrastructureError(PaperflowError):
    """Broker or blob-store failure that may succeed on a later attempt."""


class CompensationFailure(PaperflowError):
    """
    The blob write failed and the compensating delete of the document record
    failed too. There is no further automatic recovery.
    """

    def __init__(
        self,
        document_id: UUID,
        write_error: BaseException,
        delete_error: BaseException,
    ) -> None:
        super().__init__(
            f"Blob write for document {document_id} failed ({write_error!r}) "
            f"and the compensating delete failed ({delete_error!r})"
        )
        self.document_id = document_id
        self.write_error = write_error
        self.delete_error = delete_error


class ExtractionFailure(PaperflowError):
    """OCR engine error or rasterizer non-zero exit."""


class PermanentExternalAPIError(PaperflowError):
    """Missing credentials or a non-retryable API response."""


class TransientExternalAPIError(PaperflowError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(PaperflowError):
    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message if path is None else f"{path}: {message}")
        self.path = path


class PersistenceFailure(PaperflowError):
    """Relational write or search-index call that did not succeed."""
