"""
Retry with exponential backoff for tool calls
"""

import re
import random
import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from ..logging.config import get_logger
from .errors import ParameterValidationError


DEFAULT_MAX_RETRIES = 3
DEFAULT_DELAY_MS = 1000
MAX_DELAY_MS = 30000
MAX_ALLOWED_RETRIES = 10

RETRYABLE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE) for pattern in (
        r"timeout",
        r"timed out",
        r"network",
        r"connection",
        r"temporary",
        r"unavailable",
        r"rate limit",
        r"throttle",
        r"server error",
        r"5\d\d",
        r"ECONNRESET",
        r"ENOTFOUND",
        r"ETIMEDOUT",
        r"ECONNREFUSED",
    )
]

NON_RETRYABLE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE) for pattern in (
        r"validation",
        r"invalid",
        r"not found",
        r"unauthorized",
        r"forbidden",
        r"bad request",
        r"4\d\d",
        r"syntax error",
        r"parse error",
        r"malformed",
    )
]


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether an error is worth another attempt

    Order of precedence: an explicit ``retryable`` attribute, an HTTP
    ``status_code`` attribute, message patterns (non-retryable first),
    programming errors, then retryable by default.
    """
    retryable = getattr(error, "retryable", None)
    if retryable is not None:
        return bool(retryable)

    if isinstance(error, ParameterValidationError):
        return False

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        if 500 <= status < 600 or status == 429:
            return True
        if 400 <= status < 500:
            return False

    message = str(error)
    for pattern in NON_RETRYABLE_PATTERNS:
        if pattern.search(message):
            return False
    for pattern in RETRYABLE_PATTERNS:
        if pattern.search(message):
            return True

    if isinstance(error, (TypeError, AttributeError, NameError)):
        return False

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    return True


def retry_delay_from_error(error: BaseException) -> Optional[int]:
    """Delay requested by the error itself, if any"""
    retry_after = getattr(error, "retry_after_ms", None)
    if isinstance(retry_after, (int, float)) and retry_after > 0:
        return int(retry_after)
    return None


class RetryHandler:
    """Runs an async operation with bounded retries"""

    def __init__(
        self,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        max_delay_ms: int = MAX_DELAY_MS
    ):
        self.sleep = sleep or asyncio.sleep
        self.max_delay_ms = max_delay_ms
        self.logger = get_logger(__name__)

    async def retry_with_backoff(
        self,
        fn: Callable[[], Awaitable[Any]],
        max_retries: int = DEFAULT_MAX_RETRIES,
        delay_ms: int = DEFAULT_DELAY_MS,
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
        operation: Optional[str] = None
    ) -> Any:
        """
        Call ``fn`` until it succeeds, at most ``max_retries + 1`` times

        Args:
            fn: Zero-argument coroutine factory
            max_retries: Retries allowed after the first attempt
            delay_ms: Base delay, doubled on every attempt
            on_retry: Called with (retry_number, error) before each retry
            operation: Label used in log events

        Returns:
            Whatever ``fn`` returns

        Raises:
            The last error once retries are exhausted, or the first
            non-retryable error immediately
        """
        last_error: Optional[BaseException] = None

        for attempt in range(max_retries + 1):
            try:
                return await fn()
            except Exception as e:
                last_error = e

                if attempt == max_retries:
                    break

                if not is_retryable_error(e):
                    self.logger.info(
                        "Error is not retryable",
                        operation=operation,
                        attempt=attempt + 1,
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    raise

                delay = retry_delay_from_error(e)
                if delay is None:
                    delay = self.calculate_delay(delay_ms, attempt)

                self.logger.warning(
                    "Retrying after failure",
                    operation=operation,
                    retry=attempt + 1,
                    max_retries=max_retries,
                    delay_ms=round(delay, 1),
                    error=str(e)
                )

                if on_retry is not None:
                    on_retry(attempt + 1, e)

                await self.sleep(delay / 1000.0)

        raise last_error

    def calculate_delay(self, base_delay_ms: int, attempt: int) -> float:
        """Exponential backoff with up to 10% jitter, capped"""
        exponential = base_delay_ms * (2 ** attempt)
        jitter = random.random() * 0.1 * exponential
        return min(exponential + jitter, self.max_delay_ms)

    @staticmethod
    def validate_retry_config(max_retries: int, delay_ms: int) -> List[str]:
        """Report out-of-range retry settings"""
        errors = []
        if max_retries < 0:
            errors.append("maxRetries cannot be negative")
        if max_retries > MAX_ALLOWED_RETRIES:
            errors.append(f"maxRetries cannot exceed {MAX_ALLOWED_RETRIES}")
        if delay_ms < 0:
            errors.append("delayMs cannot be negative")
        if delay_ms > MAX_DELAY_MS:
            errors.append(f"delayMs cannot exceed {MAX_DELAY_MS}ms")
        return errors
