from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 2,
    delay: float = 0.25,
) -> T:
    """Await ``fn`` up to ``attempts`` times with a fixed ``delay`` between tries.

    The last error is re-raised once every attempt has failed.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            last_error = exc
            logger.debug(f"Attempt {attempt}/{attempts} failed: {exc}")
            if attempt < attempts and delay > 0:
                await asyncio.sleep(delay)
    assert last_error is not None
    raise last_error
