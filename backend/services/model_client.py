"""Model client for Groq API integration."""
import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, NoReturn, Optional
from groq import Groq
from groq import (
    RateLimitError,
    AuthenticationError,
    APIStatusError,
    APIError,
    APITimeoutError,
    APIConnectionError,
    InternalServerError,
)

from config import GROQ_API_KEY, SUPPORTED_MODELS, MAX_OUTPUT_TOKENS, REQUEST_TIMEOUT
from models.errors import ChatServiceError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class ModelError:
    """Structured description of a failed model call."""
    code: str
    message: str
    details: Dict[str, Any]


class ModelClientError(Exception):
    """Raised by ModelClient when the outbound call fails or yields nothing usable."""

    def __init__(self, error: ModelError):
        self.error = error
        super().__init__(error.message)


def _retry_after_from(exc: Exception) -> Optional[int]:
    """Read a `retry-after` header (seconds) from an SDK status error, if any."""
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    try:
        value = headers.get("retry-after")
        return int(float(value)) if value is not None else None
    except (TypeError, ValueError, AttributeError):
        return None


class ModelClient:
    """Single-call client for the Groq chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        supported_models: Optional[List[str]] = None,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        timeout: float = REQUEST_TIMEOUT,
        client: Optional[Any] = None
    ):
        """
        Initialize the model client.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            supported_models: Whitelist of model names accepted by invoke()
            max_tokens: Maximum tokens to generate per call
            timeout: Per-request timeout in seconds
            client: Pre-built Groq client (tests inject fakes here)
        """
        self.supported_models = list(supported_models or SUPPORTED_MODELS)
        self.max_tokens = max_tokens

        if client is not None:
            self.client = client
        else:
            self.api_key = api_key or GROQ_API_KEY
            if not self.api_key:
                raise ValueError("GROQ_API_KEY must be provided or set in environment")
            # SDK retries are disabled: one invoke() is exactly one outbound call
            self.client = Groq(api_key=self.api_key, max_retries=0, timeout=timeout)

        logger.info(f"ModelClient initialized with models: {', '.join(self.supported_models)}")

    def is_valid_model(self, model: Optional[str]) -> bool:
        return model in self.supported_models

    def validate(self, model: Optional[str], prompt: Any) -> str:
        """
        Check a request before any outbound call is made.

        Returns:
            The trimmed prompt

        Raises:
            ChatServiceError: INVALID_MODEL or INVALID_INPUT
        """
        if not self.is_valid_model(model):
            raise ChatServiceError(
                ErrorKind.INVALID_MODEL,
                f"Invalid model. Supported models: {', '.join(self.supported_models)}",
                details={"model": model}
            )
        if not isinstance(prompt, str) or not prompt.strip():
            raise ChatServiceError(ErrorKind.INVALID_INPUT, "Contents must be a non-empty string")
        return prompt.strip()

    def invoke(self, model: str, prompt: str) -> str:
        """
        Generate a response with exactly one call to the Groq API.

        Args:
            model: Whitelisted model name
            prompt: Non-empty prompt text

        Returns:
            The trimmed response text

        Raises:
            ChatServiceError: INVALID_MODEL or INVALID_INPUT, before any call
            ModelClientError: Structured error with code, message, and details
        """
        prompt = self.validate(model, prompt)
        start_time = time.time()

        try:
            logger.debug(f"Invoking model: {model}")
            text = self._complete(model, prompt)

        except RateLimitError as e:
            self._fail(
                "RATE_LIMIT_ERROR",
                "Rate limit exceeded. Please try again in a few moments.",
                model, start_time, e,
                status_code=429,
                retry_after=_retry_after_from(e)
            )
        except AuthenticationError as e:
            self._fail(
                "AUTHENTICATION_ERROR",
                "Authentication failed. Please check your API key.",
                model, start_time, e,
                status_code=401
            )
        except APITimeoutError as e:
            self._fail("TIMEOUT_ERROR", "Request timed out. Please try again.", model, start_time, e)
        except APIConnectionError as e:
            self._fail("CONNECTION_ERROR", "Could not reach the model API.", model, start_time, e)
        except InternalServerError as e:
            self._fail(
                "SERVER_ERROR",
                f"Groq API server error: {str(e)}",
                model, start_time, e,
                status_code=getattr(e, "status_code", None)
            )
        except APIStatusError as e:
            self._fail(
                "API_ERROR",
                f"Groq API error: {str(e)}",
                model, start_time, e,
                status_code=getattr(e, "status_code", None)
            )
        except APIError as e:
            self._fail("API_ERROR", f"Groq API error: {str(e)}", model, start_time, e)
        except Exception as e:
            self._fail(
                "UNKNOWN_ERROR",
                f"Unexpected error during generation: {str(e)}",
                model, start_time, e,
                error_type=type(e).__name__
            )

        latency_ms = int((time.time() - start_time) * 1000)

        if not text or not text.strip():
            error = ModelError(
                code="EMPTY_RESPONSE",
                message="Empty response received from model",
                details={"model": model, "latency_ms": latency_ms}
            )
            logger.warning(
                f"Empty response: model={model}, latency={latency_ms}ms",
                extra={"error_code": error.code, "model": model}
            )
            raise ModelClientError(error)

        logger.info(
            f"Generated response: model={model}, chars={len(text.strip())}, latency={latency_ms}ms",
            extra={"model": model, "latency_ms": latency_ms}
        )
        return text.strip()

    def _complete(self, model: str, prompt: str) -> Optional[str]:
        """Perform the outbound chat completion call and return the raw text."""
        response = self.client.chat.completions.create(
            model=model,
            messages=[
                {
                    "role": "user",
                    "content": prompt
                }
            ],
            max_tokens=self.max_tokens,
            temperature=0.7
        )
        return response.choices[0].message.content

    def _fail(
        self,
        code: str,
        message: str,
        model: str,
        start_time: float,
        exc: Exception,
        **extra_details: Any
    ) -> NoReturn:
        latency_ms = int((time.time() - start_time) * 1000)
        details: Dict[str, Any] = {
            "model": model,
            "latency_ms": latency_ms,
            "original_error": str(exc),
        }
        details.update({key: value for key, value in extra_details.items() if value is not None})
        error = ModelError(code=code, message=message, details=details)
        logger.error(
            f"Model call failed: code={code}, model={model}, latency={latency_ms}ms, error={exc}",
            exc_info=True,
            extra={"error_code": code, "model": model, "latency_ms": latency_ms}
        )
        raise ModelClientError(error) from exc
