"""
Retry policy for model calls.

Classifies a failed model call into one of three verdicts and computes the
exponential backoff between attempts. Rules are checked in priority order:

1. Rate limit   -> RATE_LIMITED (with a retry-after hint, default 120s)
2. Other 4xx    -> FATAL(UNKNOWN) for any 4xx status except 401 and 429
3. Quota        -> FATAL(QUOTA_EXCEEDED)
4. Auth         -> FATAL(AUTH_ERROR)
5. Transient    -> RETRYABLE (timeouts, connection drops, 5xx, empty bodies)
6. Anything else -> FATAL(UNKNOWN)

Message markers are matched on word boundaries against the error message,
and only when the failure carries no HTTP status.
"""
from dataclasses import dataclass
from enum import Enum
import logging
import re
from typing import Optional, Tuple

from config import RATE_LIMIT_RETRY_AFTER
from services.model_client import ModelClientError

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    FATAL = "fatal"
    RETRYABLE = "retryable"
    RATE_LIMITED = "rate_limited"


class FatalCause(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_ERROR = "auth_error"
    UNKNOWN = "unknown"


@dataclass
class RetryDecision:
    """
    Outcome of classifying one failure.

    Attributes:
        verdict: Whether to stop, retry, or back off for a rate limit
        cause: Set only for FATAL verdicts
        retry_after: Seconds the upstream asked us to wait (RATE_LIMITED only)
    """
    verdict: Verdict
    cause: Optional[FatalCause] = None
    retry_after: Optional[int] = None


class RetryPolicy:
    """Decides whether and how long to wait before another model call."""

    RATE_LIMIT_CODES = {"RATE_LIMIT_ERROR", "RATE_LIMIT_EXCEEDED"}
    RATE_LIMIT_MARKERS = ("rate_limit", "rate_limit_exceeded", "rate limit", "too many requests", "429")

    QUOTA_MARKERS = ("resource_exhausted", "quota", "quota_exceeded", "insufficient_quota")

    AUTH_CODES = {"AUTHENTICATION_ERROR", "AUTH_ERROR"}
    AUTH_MARKERS = ("api_key_invalid", "invalid_api_key", "invalid api key", "401")

    TRANSIENT_CODES = {
        "TIMEOUT_ERROR", "CONNECTION_ERROR", "SERVER_ERROR", "EMPTY_RESPONSE",
        "ECONNRESET", "ETIMEDOUT", "ENOTFOUND",
    }
    TRANSIENT_MARKERS = ("internal", "unavailable")

    def __init__(self, default_retry_after: int = RATE_LIMIT_RETRY_AFTER, base_delay: float = 2.0):
        self.default_retry_after = default_retry_after
        self.base_delay = base_delay

    def classify(self, failure: Exception) -> RetryDecision:
        """
        Classify a failed model call.

        A known HTTP status decides on its own: 429 is a rate limit, 401 is an
        auth failure, 5xx is transient and any other 4xx is fatal. Message
        markers are only consulted when no status is known, and only against
        the error message, never the echoed upstream response body.

        Args:
            failure: Usually a ModelClientError; other exceptions are inspected
                for `code`/`status_code` attributes and their message.

        Returns:
            RetryDecision with the verdict and, where relevant, cause or wait hint
        """
        code, status, text, retry_after = self._signals(failure)
        markers_apply = status is None

        if (
            code in self.RATE_LIMIT_CODES
            or status == 429
            or (markers_apply and self._has_marker(text, self.RATE_LIMIT_MARKERS))
        ):
            return RetryDecision(
                Verdict.RATE_LIMITED,
                retry_after=retry_after if retry_after is not None else self.default_retry_after
            )

        if status is not None and 400 <= status < 500 and status != 401:
            return RetryDecision(Verdict.FATAL, cause=FatalCause.UNKNOWN)

        if markers_apply and self._has_marker(text, self.QUOTA_MARKERS):
            return RetryDecision(Verdict.FATAL, cause=FatalCause.QUOTA_EXCEEDED)

        if (
            code in self.AUTH_CODES
            or status == 401
            or (markers_apply and self._has_marker(text, self.AUTH_MARKERS))
        ):
            return RetryDecision(Verdict.FATAL, cause=FatalCause.AUTH_ERROR)

        if (
            code in self.TRANSIENT_CODES
            or (status is not None and status >= 500)
            or (markers_apply and self._has_marker(text, self.TRANSIENT_MARKERS))
        ):
            return RetryDecision(Verdict.RETRYABLE)

        return RetryDecision(Verdict.FATAL, cause=FatalCause.UNKNOWN)

    def backoff_seconds(self, attempt: int) -> float:
        """Wait before the next attempt; attempt is 1-indexed (2s, 4s, 8s, ...)."""
        return self.base_delay ** attempt

    @staticmethod
    def _signals(failure: Exception) -> Tuple[Optional[str], Optional[int], str, Optional[int]]:
        if isinstance(failure, ModelClientError):
            details = failure.error.details
            return failure.error.code, details.get("status_code"), failure.error.message, details.get("retry_after")

        code = getattr(failure, "code", None)
        status = getattr(failure, "status_code", None) or getattr(failure, "status", None)
        if isinstance(code, int) and status is None:
            status = code
        return (
            code if isinstance(code, str) else None,
            status if isinstance(status, int) else None,
            str(failure),
            getattr(failure, "retry_after", None),
        )

    @staticmethod
    def _has_marker(text: str, markers: Tuple[str, ...]) -> bool:
        lowered = text.lower()
        return any(re.search(rf"\b{re.escape(marker)}\b", lowered) for marker in markers)
