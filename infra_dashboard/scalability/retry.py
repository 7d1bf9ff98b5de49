"""Single bounded retry for idempotent backend reads."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def retry_once(
    func: Callable[[], Awaitable[T]],
    retry_on: tuple[type[BaseException], ...],
    delay_sec: float = 0.2,
    operation: str = "backend_read",
) -> T:
    """Await func; on a retryable error wait delay_sec and try exactly once more. Never for mutations."""
    try:
        return await func()
    except retry_on as e:
        logger.info("retrying_after_error", extra={"operation": operation, "error": str(e)})
        await asyncio.sleep(delay_sec)
        return await func()
