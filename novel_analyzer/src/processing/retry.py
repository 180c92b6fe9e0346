"""Error classification and bounded exponential backoff for model calls.

Only throttling is retried here. Auth failures surface immediately, and
anything else becomes a per-chunk ``TransientError``.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

import httpx
from loguru import logger

from ..config import Config
from ..errors import (
    AnalysisError,
    AuthError,
    ErrorKind,
    RateLimitError,
    TransientError,
)
from ..utils.json_utils import safe_loads

T = TypeVar("T")

RATE_LIMIT_STATUSES = {"RESOURCE_EXHAUSTED", "RATE_LIMIT_EXCEEDED"}
AUTH_STATUSES = {"UNAUTHENTICATED", "PERMISSION_DENIED"}
AUTH_CODES = {401, 403}
AUTH_MARKERS = ("api key not valid", "invalid api key", "unauthorized")


def _error_payload(message: str) -> Tuple[Optional[int], Optional[str], Optional[str]]:
    """Read ``{"error": {"code", "status", "message"}}`` embedded in a message."""
    try:
        parsed = safe_loads(message)
    except ValueError:
        return None, None, None
    error = parsed.get("error") if isinstance(parsed, dict) else None
    if not isinstance(error, dict):
        return None, None, None
    code = error.get("code")
    status = error.get("status")
    detail = error.get("message")
    return (
        code if isinstance(code, int) else None,
        status.upper() if isinstance(status, str) else None,
        detail if isinstance(detail, str) else None,
    )


def _status_code(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def describe_exception(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    _, _, detail = _error_payload(message)
    return detail or message


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map a raw provider exception onto an ``ErrorKind``."""
    if isinstance(exc, AnalysisError):
        return exc.kind

    message = str(exc)
    payload_code, payload_status, _ = _error_payload(message)
    code = payload_code or _status_code(exc)
    status = payload_status
    if status is None and isinstance(getattr(exc, "status", None), str):
        status = exc.status.upper()

    if code == 429 or status in RATE_LIMIT_STATUSES:
        return ErrorKind.RATE_LIMIT
    if code in AUTH_CODES or status in AUTH_STATUSES:
        return ErrorKind.AUTH
    if any(marker in message.lower() for marker in AUTH_MARKERS):
        return ErrorKind.AUTH
    return ErrorKind.TRANSIENT


class RetryController:
    """Retries rate-limited calls with exponential backoff and random jitter."""

    def __init__(
        self,
        max_retries: int = None,
        initial_delay: float = None,
        backoff_factor: float = None,
        max_jitter: float = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.max_retries = Config.RETRY_MAX_RETRIES if max_retries is None else max_retries
        self.initial_delay = Config.RETRY_INITIAL_DELAY if initial_delay is None else initial_delay
        self.backoff_factor = Config.RETRY_BACKOFF_FACTOR if backoff_factor is None else backoff_factor
        self.max_jitter = Config.RETRY_MAX_JITTER if max_jitter is None else max_jitter
        self._sleep = sleep
        self._rng = rng

    def delay_for(self, retry_number: int) -> float:
        """Base delay before the given 1-based retry, without jitter."""
        return self.initial_delay * (self.backoff_factor ** (retry_number - 1))

    async def call(self, operation: Callable[[], Awaitable[T]], label: str = "") -> T:
        retries = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                kind = classify_exception(exc)
                detail = describe_exception(exc)
                if kind is ErrorKind.RATE_LIMIT and retries < self.max_retries:
                    retries += 1
                    wait = self.delay_for(retries) + self._rng() * self.max_jitter
                    logger.warning(
                        f"[retry] {label} rate limited (retry {retries}/{self.max_retries}) "
                        f"sleeping {wait:.1f}s: {detail}"
                    )
                    await self._sleep(wait)
                    continue
                if isinstance(exc, AnalysisError):
                    raise
                if kind is ErrorKind.RATE_LIMIT:
                    logger.error(f"[retry] {label} giving up after {retries} retries: {detail}")
                    raise RateLimitError(
                        f"call failed after {retries} retries due to persistent rate limiting: {detail}",
                        retries=retries,
                    ) from exc
                if kind is ErrorKind.AUTH:
                    logger.error(f"[retry] {label} authentication rejected: {detail}")
                    raise AuthError(detail) from exc
                logger.warning(f"[retry] {label} call failed: {detail}")
                raise TransientError(detail) from exc


__all__ = ["RetryController", "classify_exception", "describe_exception"]
