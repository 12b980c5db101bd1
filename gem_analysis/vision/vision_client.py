"""
Vision provider client with retry logic.

Wraps the OpenAI chat completions API. Transient failures (connection
resets, timeouts, rate limits, 5xx) are retried with exponential backoff;
anything else fails immediately.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAI,
    OpenAIError,
    RateLimitError,
)

from config.constants import DEFAULT_BACKOFF_DELAYS, DEFAULT_MAX_ATTEMPTS

from ..errors import VisionProviderError

logger = logging.getLogger(__name__)


@dataclass
class VisionResponse:
    """Text content and reported usage of one provider call."""

    text: str
    input_tokens: int
    output_tokens: int
    model: str
    finish_reason: Optional[str] = None


def extract_usage(response: Any) -> Tuple[int, int]:
    """
    Read provider-reported token counts.

    Raises:
        VisionProviderError: If the response carries no usage block; costs
            are never estimated.
    """
    usage = getattr(response, "usage", None)
    if usage is None and isinstance(response, dict):
        usage = response.get("usage")
    if usage is None:
        raise VisionProviderError("Provider response missing usage data", error_code="MISSING_USAGE")

    if isinstance(usage, dict):
        prompt = usage.get("prompt_tokens", usage.get("input_tokens"))
        completion = usage.get("completion_tokens", usage.get("output_tokens"))
    else:
        prompt = getattr(usage, "prompt_tokens", None)
        completion = getattr(usage, "completion_tokens", None)
        if prompt is None:
            prompt = getattr(usage, "input_tokens", None)
        if completion is None:
            completion = getattr(usage, "output_tokens", None)

    if prompt is None or completion is None:
        raise VisionProviderError("Provider usage lacks token counts", error_code="MISSING_USAGE")
    return int(prompt), int(completion)


class VisionClient:
    """Send analysis requests to the vision provider."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[Any] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_delays: Optional[List[float]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            api_key: OpenAI API key (ignored when ``client`` is given)
            client: Preconfigured client exposing ``chat.completions.create``
            max_attempts: Max attempts per request (default: 3)
            backoff_delays: Delay between retries in seconds (default: [1, 2, 4])
            sleep: Sleep function, injectable for tests
        """
        self.client = client if client is not None else OpenAI(api_key=api_key)
        self.max_attempts = max_attempts
        self.backoff_delays = backoff_delays or list(DEFAULT_BACKOFF_DELAYS)
        self._sleep = sleep

    def complete(self, request: Dict[str, Any]) -> VisionResponse:
        """
        Send one request, retrying transient failures with backoff.

        Raises:
            VisionProviderError: On a permanent error or when all attempts fail
        """
        last_error: Optional[Exception] = None
        error_code = "UNKNOWN"

        for attempt in range(self.max_attempts):
            try:
                return self._call(request)

            except VisionProviderError:
                raise
            except Exception as e:
                last_error = e
                error_code, transient = self.categorize_error(e)
                error_type = type(e).__name__

                if not transient:
                    logger.error(
                        f"Vision API permanent error: {error_type} - {e}",
                        extra={"error_type": error_type, "error_code": error_code},
                    )
                    raise VisionProviderError(
                        f"Vision API error ({error_code}): {e}",
                        error_code=error_code,
                        transient=False,
                        retry_count=attempt + 1,
                    ) from e

                if attempt < self.max_attempts - 1:
                    delay = self.backoff_delays[min(attempt, len(self.backoff_delays) - 1)]
                    logger.warning(
                        f"Vision API error (attempt {attempt + 1}/{self.max_attempts}): {error_type} - {e}",
                        extra={
                            "error_type": error_type,
                            "error_code": error_code,
                            "retry_delay": delay,
                        },
                    )
                    self._sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_attempts} attempts failed: {error_type} - {e}",
                        extra={"error_type": error_type, "error_code": error_code},
                    )

        raise VisionProviderError(
            f"Vision request failed after {self.max_attempts} attempts: {last_error}",
            error_code=error_code,
            transient=True,
            retry_count=self.max_attempts,
        )

    def _call(self, request: Dict[str, Any]) -> VisionResponse:
        response = self.client.chat.completions.create(**request)

        input_tokens, output_tokens = extract_usage(response)
        choice = response.choices[0]
        text = choice.message.content or ""

        logger.info(
            f"Vision response: {len(text) / 1024:.1f}KB, "
            f"{input_tokens} input / {output_tokens} output tokens"
        )

        return VisionResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=getattr(response, "model", None) or request.get("model", ""),
            finish_reason=getattr(choice, "finish_reason", None),
        )

    @staticmethod
    def categorize_error(error: Exception) -> Tuple[str, bool]:
        """Return (error_code, transient) for a provider exception."""
        if isinstance(error, RateLimitError):
            return "RATE_LIMIT", True
        if isinstance(error, APITimeoutError):
            return "TIMEOUT", True
        if isinstance(error, APIConnectionError):
            return "CONNECTION", True
        if isinstance(error, APIStatusError):
            if error.status_code >= 500:
                return "SERVER_ERROR", True
            return f"HTTP_{error.status_code}", False
        if isinstance(error, (ConnectionError, TimeoutError)):
            return "CONNECTION", True

        error_str = str(error).lower()
        if "rate_limit" in error_str or "rate limit" in error_str:
            return "RATE_LIMIT", True
        if "timeout" in error_str or "handshake" in error_str or "connection reset" in error_str:
            return "CONNECTION", True
        if isinstance(error, OpenAIError):
            return "PROVIDER", False
        return "UNKNOWN", False
