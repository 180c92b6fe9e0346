"""Exception hierarchy shared by the analysis pipeline.

Model-call failures are classified once, at the boundary to the model
service (see ``processing.retry``), into one of three kinds. Everything
downstream branches on the exception type and never re-inspects the raw
provider error.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate-limit"
    TRANSIENT = "transient"


class AnalysisError(Exception):
    """A classified failure of a model call."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthError(AnalysisError):
    """Credentials were rejected. Never retried; halts the job."""

    kind = ErrorKind.AUTH


class RateLimitError(AnalysisError):
    """Quota exhausted and retries used up. Pauses the whole job."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(self, message: str, retries: int = 0):
        super().__init__(message)
        self.retries = retries


class TransientError(AnalysisError):
    """Per-chunk failure; the chunk is marked errored and the job continues."""

    kind = ErrorKind.TRANSIENT


class ResponseParseError(TransientError):
    """The model answered but the payload could not be used."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class FinalizationError(Exception):
    """Report synthesis could not run (e.g. no chunk was analyzed)."""


class ChunkSourceError(Exception):
    """The document could not be turned into chunks."""


class InvalidTransitionError(Exception):
    """A job status change not permitted by the state machine."""

    def __init__(self, current, target):
        super().__init__(f"invalid transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


__all__ = [
    "ErrorKind",
    "AnalysisError",
    "AuthError",
    "RateLimitError",
    "TransientError",
    "ResponseParseError",
    "FinalizationError",
    "ChunkSourceError",
    "InvalidTransitionError",
]
