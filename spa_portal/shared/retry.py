"""Retry helper for flaky backend lookups"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = 2,
    delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run operation, retrying up to `retries` more times with a fixed delay"""
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= retries:
                logger.warning(f"⚠️ {label} failed after {attempt + 1} attempts: {e}")
                raise
            attempt += 1
            logger.info(f"🔄 {label} failed ({e}), retry {attempt}/{retries} in {delay:.1f}s")
            await sleep(delay)
