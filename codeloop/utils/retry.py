"""
Retry utility for handling transient errors in model interactions.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict

import aiohttp
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from codeloop.exceptions.model import ModelRateLimitError, ModelTimeoutError

logger = logging.getLogger(__name__)

# Lowercased substrings that mark an error message as transient.
TRANSIENT_ERROR_MARKERS = (
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
    "etimedout",
    "socket",
    "network",
    "429",
    "502",
    "503",
)

TRANSIENT_ERROR_TYPES = (
    ModelTimeoutError,
    ModelRateLimitError,
    aiohttp.ClientConnectionError,
    asyncio.TimeoutError,
)


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0


RETRY_PRESETS: Dict[str, RetryConfig] = {
    "api": RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=30.0, multiplier=2.0),
    "tool": RetryConfig(max_attempts=2, initial_delay=0.5, max_delay=5.0, multiplier=2.0),
    "network": RetryConfig(max_attempts=5, initial_delay=1.0, max_delay=60.0, multiplier=2.0),
}


def is_transient_error(error: BaseException) -> bool:
    """
    True for timeouts, rate limits and dropped connections, judged by
    type first and then by the message text.
    """
    if isinstance(error, TRANSIENT_ERROR_TYPES):
        return True
    original = getattr(error, "original_error", None)
    if original is not None and isinstance(original, TRANSIENT_ERROR_TYPES):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


def _retry_kwargs(config: RetryConfig, predicate: Callable[[BaseException], bool]) -> dict:
    return dict(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.initial_delay,
            exp_base=config.multiplier,
            max=config.max_delay,
        ),
        retry=retry_if_exception(predicate),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def retry_on_transient_errors(
    config: RetryConfig = RETRY_PRESETS["api"],
    predicate: Callable[[BaseException], bool] = is_transient_error,
):
    """
    Decorator to retry functions on transient errors with exponential backoff.

    Delay before retry n is initial_delay * multiplier ** (n - 1), capped
    at max_delay. The last error is re-raised once attempts run out.
    """
    return retry(**_retry_kwargs(config, predicate))


def async_retrying(
    config: RetryConfig = RETRY_PRESETS["api"],
    predicate: Callable[[BaseException], bool] = is_transient_error,
) -> AsyncRetrying:
    """Iterator form, for `async for attempt in async_retrying(...)`."""
    return AsyncRetrying(**_retry_kwargs(config, predicate))
