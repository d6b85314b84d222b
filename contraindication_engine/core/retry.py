"""
Contraindication Alert Engine - Bounded retry for collaborator calls
"""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from contraindication_engine.config.settings import (
    FETCH_TIMEOUT_SECONDS, RETRY_ATTEMPTS, RETRY_BASE_DELAY, RETRY_MAX_DELAY
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str,
    attempts: int = RETRY_ATTEMPTS,
    timeout: float = FETCH_TIMEOUT_SECONDS,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
) -> T:
    """
    Run an async collaborator call with a per-attempt timeout and
    exponential backoff between attempts.

    The last error is re-raised once all attempts are spent; a timeout
    surfaces as asyncio.TimeoutError.
    """
    attempts = max(1, attempts)
    last_error: BaseException = RuntimeError(f"{label}: no attempt made")

    for attempt in range(attempts):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            last_error = e
            logger.warning(f"{label} timed out after {timeout}s (attempt {attempt + 1}/{attempts})")
        except Exception as e:
            last_error = e
            logger.warning(f"{label} failed (attempt {attempt + 1}/{attempts}): {e}")

        # Wait before retry
        if attempt < attempts - 1:
            await asyncio.sleep(min(base_delay * (2 ** attempt), max_delay))

    logger.error(f"{label} failed after {attempts} attempts")
    raise last_error
