"""Retry with exponential backoff + jitter for GHL calls."""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Iterable, Optional

from services.ghl_errors import CRMError, DEFAULT_RETRYABLE_KINDS, classify_error

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 30.0
MAX_JITTER_SECONDS = 0.5


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number attempt+1 (attempt is 0-indexed)."""
    jitter = random.uniform(0, MAX_JITTER_SECONDS)
    return min(base_delay * (2 ** attempt) + jitter, max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY_SECONDS,
    max_delay: float = MAX_DELAY_SECONDS,
    retryable_kinds: Optional[Iterable] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, CRMError, float], None]] = None,
) -> Any:
    """
    Run operation, retrying transient failures.

    Total attempts are at most max_retries + 1. Anything raised to the caller is
    a CRMError chained to the original exception.
    """
    kinds = frozenset(retryable_kinds) if retryable_kinds is not None else DEFAULT_RETRYABLE_KINDS
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            error = classify_error(e)

            if not error.retryable or error.kind not in kinds or attempt >= max_retries:
                if error is e:
                    raise
                raise error from e

            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"Retry attempt {attempt + 1}/{max_retries} after {delay:.2f}s: {error.kind.value}"
            )
            if on_retry:
                on_retry(attempt + 1, error, delay)
            await sleep(delay)
            attempt += 1
