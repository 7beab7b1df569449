import asyncio
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from google.api_core import exceptions as gexc
from loguru import logger

ATTEMPTS_PER_MODEL = 2

# Lower-cased message fragments of errors worth another attempt or another model.
RETRYABLE_PATTERNS = (
    "insufficient credits",
    "insufficient_quota",
    "needs to be renewed",
    "forbidden",
    "gateway timeout",
    "bad gateway",
    "deadline exceeded",
    "deadlineexceeded",
    "timed out",
    "rate limit",
    "rate_limit",
    "too many requests",
    "resource_exhausted",
    "resource exhausted",
    "service unavailable",
    "internal server error",
)

# Only a leading status code counts; numbers elsewhere in a message are data
_RETRYABLE_STATUS_RE = re.compile(r"^\s*(?:402|403|429|5\d\d)\b")

RETRYABLE_TYPES = (
    gexc.ResourceExhausted,
    gexc.TooManyRequests,
    gexc.DeadlineExceeded,
    gexc.GatewayTimeout,
    gexc.ServiceUnavailable,
    gexc.InternalServerError,
    gexc.Forbidden,
)


class EmptyModelResponseError(RuntimeError):
    """The model answered with no content."""


class ModelsExhaustedError(RuntimeError):
    """Every candidate model failed with a retryable error on every attempt."""

    def __init__(self, last_error: Exception, models: Sequence[str]):
        self.last_error = last_error
        self.models = list(models)
        super().__init__(
            f"All AI models failed ({', '.join(self.models)}). Last error: {last_error}. "
            "This usually means the AI credits are exhausted or the service is overloaded. "
            "Please try again later."
        )


class ChatClient(Protocol):
    async def complete(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        max_output_tokens: int,
        temperature: float,
        extra_options: Optional[Dict[str, Any]] = None,
    ) -> str: ...


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (EmptyModelResponseError,) + RETRYABLE_TYPES):
        return True
    # Any other typed API error is a bad request
    if isinstance(exc, gexc.GoogleAPICallError):
        return False
    msg = str(exc).lower()
    if any(pattern in msg for pattern in RETRYABLE_PATTERNS):
        return True
    return bool(_RETRYABLE_STATUS_RE.match(msg))


def candidate_models(requested: str, fallbacks: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for model in [requested, *fallbacks]:
        if model and model not in seen:
            seen.append(model)
    return seen


class FallbackChatCaller:
    """Single entry point for every model call in the pipeline.

    Each candidate model gets ATTEMPTS_PER_MODEL tries with a short, growing
    pause in between. A non-retryable error is re-raised immediately so a
    malformed request never looks like an outage.
    """

    def __init__(
        self,
        client: ChatClient,
        fallback_models: Sequence[str],
        max_output_tokens: int = 8192,
        temperature: float = 0.1,
        base_delay: float = 1.0,
    ):
        self.client = client
        self.fallback_models = list(fallback_models)
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.base_delay = base_delay

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        extra_options: Optional[Dict[str, Any]] = None,
    ) -> str:
        models = candidate_models(model, self.fallback_models)
        if not models:
            raise ValueError("no candidate models configured")
        last_error: Optional[Exception] = None

        for candidate in models:
            for attempt in range(1, ATTEMPTS_PER_MODEL + 1):
                try:
                    content = await self.client.complete(
                        candidate,
                        messages,
                        self.max_output_tokens,
                        self.temperature,
                        extra_options,
                    )
                    if not content or not content.strip():
                        raise EmptyModelResponseError(f"Empty response from {candidate}")
                    if candidate != model:
                        logger.info(f"Fallback model {candidate} answered")
                    return content
                except Exception as e:
                    if not is_retryable(e):
                        logger.error(f"Non-retryable error from {candidate}: {e}")
                        raise
                    last_error = e
                    logger.error(f"{candidate} attempt {attempt}/{ATTEMPTS_PER_MODEL} failed: {e}")
                    if attempt < ATTEMPTS_PER_MODEL:
                        await asyncio.sleep(self.base_delay * attempt)

        raise ModelsExhaustedError(last_error, models) from last_error
