"""Fixed-delay Retry Executor.

Attempting -> Success
Attempting -> Retrying -> Attempting   (retryable failure, budget left)
Attempting -> Exhausted                (non-retryable, or budget spent)

Only failures with no response at all, or an upstream 5xx, are retried.
Rate-limit, authorization, other 4xx and validation failures are terminal.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from rdpanel.config.constants import DEFAULT_RETRY_DELAY, MAX_RETRIES
from rdpanel.core.errors import ApiError, classify_exception
from rdpanel.observability.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryExecutor:
    """Retry executor with a fixed delay between attempts.

    Usage:
        executor = RetryExecutor(max_retries=3, delay=1.0)

        result = await executor.execute(lambda: client.get("/servers"))
    """

    # Configuration
    max_retries: int = MAX_RETRIES
    delay: float = DEFAULT_RETRY_DELAY  # seconds
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def execute(self, func: Callable[[], Awaitable[T]], *, name: str = "request") -> T:
        """Run `func` until it succeeds or fails terminally.

        Every failure is classified before the retry decision, so callers only
        ever see an ApiError.

        Args:
            func: Zero-argument coroutine factory; called once per attempt
            name: Operation name for logging

        Returns:
            Function result

        Raises:
            ApiError: The classified failure of the last attempt
        """
        retries_left = self.max_retries
        while True:
            try:
                return await func()

            except asyncio.CancelledError:
                raise

            except Exception as e:
                error = classify_exception(e)

                if not error.is_retryable:
                    logger.debug(
                        f"Non-retryable error in {name}: {error.kind.value}",
                        extra={"status": error.status},
                    )
                    raise _chained(error, e)

                if retries_left <= 0:
                    logger.warning(
                        f"Max retries ({self.max_retries}) exhausted for {name}",
                        extra={"error": error.kind.value, "status": error.status},
                    )
                    raise _chained(error, e)

                retries_left -= 1
                logger.info(
                    f"Retry {self.max_retries - retries_left}/{self.max_retries} "
                    f"for {name} after {self.delay:.1f}s",
                    extra={"error": error.kind.value, "status": error.status},
                )
                await self.sleep(self.delay)

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        """Retry predicate over raw or classified failures."""
        if isinstance(error, ApiError):
            return error.is_retryable
        return classify_exception(error).is_retryable


def _chained(error: ApiError, cause: BaseException) -> ApiError:
    if error is not cause:
        error.__cause__ = cause
    return error
