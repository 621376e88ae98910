"""
functions/utils/errors.py

WHAT THIS FILE IS FOR
---------------------
Domain exceptions raised by the scoring pipeline.

Every exception carries:
- kind:           stable machine-readable error kind (e.g. "UnreliableExtraction")
- stage:          pipeline stage that raised it (extract / compose / dispatch / persist)
- http_status:    status the API layer should map it to
- public_message: sanitized text that may cross the HTTP boundary
- cause:          underlying exception, kept for logs only

Only `public_message` is ever returned to clients. `to_dict()` is the
log-side view and may include the underlying cause.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ScoringError(Exception):
    """Base class for all scoring pipeline failures."""

    kind: str = "ScoringError"
    stage: str = "pipeline"
    http_status: int = 500
    public_message: str = "Resume scoring failed."

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.cause = cause
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind,
            "stage": self.stage,
            "message": self.message,
            "details": self.details,
        }
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result


class DocumentReadError(ScoringError):
    """The uploaded document could not be parsed at all."""

    kind = "InvalidDocument"
    stage = "extract"
    http_status = 400
    public_message = "Could not read the uploaded document. Please upload a valid PDF, DOCX or TXT file."


class UnreliableExtractionError(ScoringError):
    """Two extraction passes disagreed; the text cannot be trusted."""

    kind = "UnreliableExtraction"
    stage = "extract"
    http_status = 400
    public_message = (
        "Resume extraction was unreliable. Please try a different file format "
        "or ensure text is selectable."
    )


class EmptyInputError(ScoringError):
    kind = "EmptyInput"
    stage = "compose"
    http_status = 400
    public_message = "Could not extract text from the provided file. It might be empty or unreadable."


class UpstreamStructuralError(ScoringError):
    """
    The upstream answered at the transport level but the payload is not
    the expected candidates[0].content.parts[0].text shape.

    Recovered locally by credential rotation; never surfaced unless the
    whole pool is exhausted.
    """

    kind = "UpstreamStructuralError"
    stage = "dispatch"
    http_status = 502
    public_message = "The AI service returned an unexpected response."


class UpstreamHTTPError(ScoringError):
    """The upstream answered with status >= 400. Only the status code is kept."""

    kind = "UpstreamHTTPError"
    stage = "dispatch"
    http_status = 502
    public_message = "The AI service rejected the request."

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Upstream returned HTTP {status_code}", details={"status_code": status_code})
        self.status_code = status_code


class UpstreamTransportError(ScoringError):
    """Connection failure, timeout, or any other non-HTTP attempt failure."""

    kind = "UpstreamTransportError"
    stage = "dispatch"
    http_status = 502
    public_message = "The AI service could not be reached."


class UpstreamExhaustedError(ScoringError):
    """Every credential in the pool was tried once and all attempts failed."""

    kind = "UpstreamExhausted"
    stage = "dispatch"
    http_status = 502
    public_message = "The AI scoring service is currently unavailable. Please try again later."

    def __init__(self, message: str, *, attempts: int, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause=cause, details={"attempts": attempts})
        self.attempts = attempts


class PersistenceError(ScoringError):
    """The scoring record could not be read or written."""

    kind = "PersistenceError"
    stage = "persist"
    http_status = 500
    public_message = "Your score was computed but could not be saved."

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        details = {"operation": operation} if operation else {}
        super().__init__(message, cause=cause, details=details)
