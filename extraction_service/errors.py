"""Typed failure taxonomy for the extraction pipeline.

Control flow keys off the exception type and its ``kind``; message text is only
ever rendered for humans (see ``user_message``).
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    INPUT = "input"
    UNSUPPORTED_TYPE = "unsupported_type"
    TRANSIENT_PROVIDER = "transient_provider"
    PROVIDER_CONFIGURATION = "provider_configuration"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    TIMED_OUT = "timed_out"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    INSUFFICIENT_TEXT = "insufficient_text"
    CORRUPT_DOCUMENT = "corrupt_document"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


class ExtractionError(Exception):
    kind: ErrorKind = ErrorKind.INPUT
    recoverable: bool = False


# -- Not retried --------------------------------------------------------------


class InputError(ExtractionError):
    kind = ErrorKind.INPUT


class UnsupportedTypeError(InputError):
    kind = ErrorKind.UNSUPPORTED_TYPE

    def __init__(self, mime_type: str) -> None:
        super().__init__(f"Unsupported file type: {mime_type}")
        self.mime_type = mime_type


class ExtractionCancelledError(ExtractionError):
    kind = ErrorKind.CANCELLED


# -- Escalate to the next strategy --------------------------------------------


class TransientProviderError(ExtractionError):
    kind = ErrorKind.TRANSIENT_PROVIDER
    recoverable = True

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        if kind is not None:
            self.kind = kind


class PayloadTooLargeError(ExtractionError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE
    recoverable = True

    def __init__(self, estimated_bytes: int, limit_bytes: int) -> None:
        super().__init__(
            f"Estimated request payload {estimated_bytes} bytes exceeds {limit_bytes} byte limit"
        )
        self.estimated_bytes = estimated_bytes
        self.limit_bytes = limit_bytes


class TimedOutError(ExtractionError):
    kind = ErrorKind.TIMED_OUT
    recoverable = True

    def __init__(self, message: str, *, attempts: int | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts


class ResourceUnavailableError(ExtractionError):
    kind = ErrorKind.RESOURCE_UNAVAILABLE
    recoverable = True


class InsufficientTextError(ExtractionError):
    kind = ErrorKind.INSUFFICIENT_TEXT
    recoverable = True

    def __init__(self, method: str, chars: int, page_count: int, *, reason: str | None = None) -> None:
        if reason:
            msg = f"{method} text across {page_count} page(s) is unreadable ({reason})"
        else:
            msg = f"{method} produced only {chars} characters across {page_count} page(s)"
        super().__init__(msg)
        self.method = method
        self.chars = chars
        self.page_count = page_count
        self.reason = reason


class CorruptDocumentError(ExtractionError):
    kind = ErrorKind.CORRUPT_DOCUMENT
    recoverable = True


# -- Terminal -----------------------------------------------------------------


class ExtractionFailedError(ExtractionError):
    """Every strategy was tried; ``last_error`` is the final recoverable failure."""

    kind = ErrorKind.EXHAUSTED

    def __init__(self, last_error: ExtractionError | None, attempted: list[str]) -> None:
        detail = str(last_error) if last_error is not None else "no strategy produced text"
        super().__init__(f"All extraction strategies failed ({', '.join(attempted)}): {detail}")
        self.last_error = last_error
        self.attempted = list(attempted)
        if isinstance(last_error, TimedOutError):
            self.kind = ErrorKind.TIMED_OUT


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INPUT: "The request was missing required fields or was malformed.",
    ErrorKind.UNSUPPORTED_TYPE: "This file type is not supported. Upload a PDF or an image.",
    ErrorKind.TRANSIENT_PROVIDER: "The text recognition service is temporarily unavailable. Please try again.",
    ErrorKind.PROVIDER_CONFIGURATION: "The text recognition service is not configured correctly.",
    ErrorKind.PAYLOAD_TOO_LARGE: "The file is too large to process.",
    ErrorKind.TIMED_OUT: "Text extraction is taking longer than expected. Please try again later.",
    ErrorKind.RESOURCE_UNAVAILABLE: "Local text recognition is unavailable.",
    ErrorKind.INSUFFICIENT_TEXT: "No readable text could be found in this document.",
    ErrorKind.CORRUPT_DOCUMENT: "The document appears to be damaged.",
    ErrorKind.CANCELLED: "Text extraction was cancelled.",
    ErrorKind.EXHAUSTED: "We could not extract text from this document.",
}


def user_message(kind: ErrorKind) -> str:
    return _USER_MESSAGES.get(kind, _USER_MESSAGES[ErrorKind.EXHAUSTED])
