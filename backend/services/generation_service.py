"""Generation service: bounded-retry orchestration over the model client."""
import time
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from config import DEFAULT_MODEL, MAX_ATTEMPTS
from models.conversation import utcnow
from models.errors import ChatServiceError, ErrorKind
from services.model_client import ModelClient, ModelClientError
from services.retry_policy import FatalCause, RetryPolicy, Verdict

logger = logging.getLogger(__name__)

FATAL_ERRORS = {
    FatalCause.AUTH_ERROR: (ErrorKind.AUTH_ERROR, "Invalid API key. Please check your configuration."),
    FatalCause.QUOTA_EXCEEDED: (
        ErrorKind.QUOTA_EXCEEDED,
        "API quota exceeded. Please try again tomorrow or upgrade your plan."
    ),
}


@dataclass
class GenerationResult:
    """Normalized result of a successful generation."""
    text: str
    model: str
    attempt: int
    timestamp: datetime
    latency_ms: int = 0


class GenerationService:
    """Runs a generation request through the model client with bounded retries."""

    def __init__(
        self,
        model_client: ModelClient,
        retry_policy: Optional[RetryPolicy] = None,
        default_model: str = DEFAULT_MODEL,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            model_client: Client performing one outbound call per invoke()
            retry_policy: Failure classifier and backoff schedule
            default_model: Model used when the caller doesn't name one
            max_attempts: Default attempt budget per request
            sleep: Blocking wait between attempts (injected in tests)
        """
        self.model_client = model_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_model = default_model
        self.max_attempts = max_attempts
        self.sleep = sleep

    @property
    def supported_models(self):
        return self.model_client.supported_models

    def validate(self, prompt, model: Optional[str] = None) -> str:
        """Fail fast on a bad model or prompt; returns the trimmed prompt."""
        return self.model_client.validate(model if model is not None else self.default_model, prompt)

    def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_attempts: Optional[int] = None
    ) -> GenerationResult:
        """
        Generate text, retrying transient failures and rate limits.

        Args:
            prompt: Non-empty prompt text
            model: Whitelisted model name (defaults to DEFAULT_MODEL)
            max_attempts: Attempt budget (defaults to MAX_ATTEMPTS)

        Returns:
            GenerationResult carrying the attempt number that succeeded

        Raises:
            ChatServiceError: INVALID_MODEL, INVALID_INPUT, RATE_LIMIT_EXCEEDED,
                QUOTA_EXCEEDED, AUTH_ERROR or GENERATION_FAILED
        """
        model = model if model is not None else self.default_model
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        prompt = self.validate(prompt, model)
        if max_attempts < 1:
            raise ChatServiceError(ErrorKind.INVALID_INPUT, "max_attempts must be at least 1")

        start_time = time.time()
        last_error: Optional[ModelClientError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                text = self.model_client.invoke(model, prompt)
            except ModelClientError as e:
                last_error = e
                decision = self.retry_policy.classify(e)
                has_next = attempt < max_attempts

                logger.warning(
                    f"Attempt {attempt}/{max_attempts} failed: {e.error.code} ({decision.verdict.value})",
                    extra={"attempt": attempt, "model": model, "error_code": e.error.code}
                )

                if decision.verdict == Verdict.FATAL:
                    raise self._fatal_error(decision.cause, e, attempt) from e

                if decision.verdict == Verdict.RATE_LIMITED and not has_next:
                    raise ChatServiceError(
                        ErrorKind.RATE_LIMIT_EXCEEDED,
                        "Rate limit exceeded. Please wait a few minutes before trying again.",
                        retry_after=decision.retry_after,
                        details={"model": model, "attempts": attempt}
                    ) from e

                if has_next:
                    wait = self.retry_policy.backoff_seconds(attempt)
                    logger.info(f"Retrying in {wait:g}s", extra={"attempt": attempt, "model": model})
                    self.sleep(wait)
                continue

            latency_ms = int((time.time() - start_time) * 1000)
            logger.info(
                f"Generation succeeded on attempt {attempt} in {latency_ms}ms",
                extra={"attempt": attempt, "model": model, "latency_ms": latency_ms}
            )
            return GenerationResult(
                text=text,
                model=model,
                attempt=attempt,
                timestamp=utcnow(),
                latency_ms=latency_ms
            )

        raise ChatServiceError(
            ErrorKind.GENERATION_FAILED,
            f"Content generation failed after {max_attempts} attempts: {last_error}",
            details={"model": model, "attempts": max_attempts, "last_error": last_error.error.code}
        ) from last_error

    @staticmethod
    def _fatal_error(cause: FatalCause, error: ModelClientError, attempt: int) -> ChatServiceError:
        kind, message = FATAL_ERRORS.get(
            cause,
            (ErrorKind.GENERATION_FAILED, f"Content generation failed: {error}")
        )
        return ChatServiceError(
            kind,
            message,
            details={"attempts": attempt, "last_error": error.error.code}
        )
