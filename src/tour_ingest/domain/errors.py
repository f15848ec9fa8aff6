"""Domain-specific errors.

Messages are part of the contract: the job runner classifies failures by
matching them against transient-failure patterns, so timeouts say "timeout",
HTTP failures carry the status code and recoverable LLM failures say
"temporary". The HTTP layer maps `info.code` to response statuses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class IngestDomainError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.info = DomainErrorInfo(code=self.code, message=message, detail=detail)


@dataclass(frozen=True)
class DomainErrorInfo:
    code: str
    message: str
    detail: Optional[str] = None


class InvalidInputError(IngestDomainError):
    """Raised when request/config validation fails."""

    code = "INVALID_INPUT"


class InvalidURLError(IngestDomainError):
    code = "INVALID_URL"


class JobNotFoundError(IngestDomainError):
    code = "NOT_FOUND"


class AgencyNotFoundError(IngestDomainError):
    code = "NOT_FOUND"


class JobConflictError(IngestDomainError):
    """The job is locked by another run or is in a state that forbids the action."""

    code = "CONFLICT"


class NetworkTimeoutError(IngestDomainError):
    code = "NETWORK_TIMEOUT"


class UpstreamHTTPError(IngestDomainError):
    """Non-2xx answer from a scraped site. The status code is kept in the message."""

    code = "UPSTREAM_HTTP_ERROR"

    def __init__(self, status: int, url: str, detail: str | None = None):
        super().__init__(f"HTTP {status} while fetching {url}", detail=detail)
        self.status = status
        self.url = url


class RateLimitExceededError(IngestDomainError):
    code = "RATE_LIMIT_EXCEEDED"


class ContentProcessingError(IngestDomainError):
    code = "CONTENT_PROCESSING_ERROR"


class PdfExtractionError(IngestDomainError):
    """Encrypted, corrupt or textless PDF. Retrying will not help."""

    code = "PDF_EXTRACTION_ERROR"


class OcrError(IngestDomainError):
    code = "OCR_ERROR"


class ExtractionError(IngestDomainError):
    """LLM extraction failed (no response, bad shape or unparseable output)."""

    code = "EXTRACTION_ERROR"


class ExtractionTruncatedError(ExtractionError):
    """The model stopped at its token limit; a re-run may succeed."""

    code = "EXTRACTION_TRUNCATED"


class StorageError(IngestDomainError):
    code = "STORAGE_ERROR"


class DatabaseError(IngestDomainError):
    code = "DATABASE_ERROR"
