import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ideaforge.errors import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class GenerationRetryPolicy:
    """Bounded exponential backoff for rate-limited generation calls.

    Only ``RateLimitedError`` is retried; anything else propagates on the
    first attempt. Delays are ``base_delay * 2 ** (attempt + 1)`` seconds,
    i.e. 10s, 20s, 40s with the defaults.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * 2 ** (attempt + 1)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "generation",
    ) -> T:
        """Run ``operation`` with up to ``max_retries`` additional attempts.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            operation_name: Used in log lines and the final error

        Returns:
            The first successful result

        Raises:
            RateLimitedError: Every attempt was rate limited. The last
                provider error is chained as ``__cause__``.
        """
        total_attempts = self.max_retries + 1
        last_error: RateLimitedError | None = None

        for attempt in range(total_attempts):
            try:
                return await operation()
            except RateLimitedError as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = self.delay_for(attempt)
                    logger.warning(
                        f"{operation_name}: rate limited (attempt {attempt + 1}/{total_attempts}), "
                        f"retrying in {delay:.0f}s"
                    )
                    await self.sleep(delay)

        logger.error(f"{operation_name}: still rate limited after {total_attempts} attempts")
        raise RateLimitedError(
            f"{operation_name} rate limited after {total_attempts} attempts: {last_error}",
            attempts=total_attempts,
            retry_after=last_error.retry_after if last_error else None,
        ) from last_error
