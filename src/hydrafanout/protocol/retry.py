"""
hydrafanout/protocol/retry.py

Bounded retry for a single transaction.

A RetryPolicy runs an async attempt up to `max_attempts` times, waiting a
fixed delay between attempts. Only transient errors are retried; anything
else propagates immediately. The sleep function is injectable so the
policy can be tested without wall-clock waits (or driven by trio's
MockClock).
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import trio

from ..errors import ConfirmationTimeout, RetryBudgetExhausted, SubmissionError

logger = logging.getLogger("hydrafanout.protocol.retry")

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (SubmissionError, ConfirmationTimeout)


@dataclass
class RetryPolicy:
    """
    Fixed-delay retry policy.

    Usage:
        policy = RetryPolicy(max_attempts=3, delay=1.0)
        tx_id = await policy.run(send_once, description="batch 2")
    """
    max_attempts: int = 3
    delay: float = 1.0                 # Seconds between attempts
    jitter: float = 0.0                # Up to +/- this fraction of delay
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS
    sleep: Callable[[float], Awaitable[None]] = field(default=trio.sleep, repr=False)
    on_retry: Optional[Callable[[int, BaseException], None]] = field(default=None, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay cannot be negative, got {self.delay}")

    def get_delay(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        if not self.jitter:
            return self.delay
        return max(0.0, self.delay * (1 + random.uniform(-self.jitter, self.jitter)))

    async def run(
        self,
        attempt_fn: Callable[[int], Awaitable[T]],
        description: str = "operation",
    ) -> T:
        """
        Run `attempt_fn(attempt)` until it succeeds or attempts run out.

        Args:
            attempt_fn: Async callable receiving the 1-based attempt number
            description: Label for log lines

        Returns:
            The first successful result

        Raises:
            RetryBudgetExhausted: If every attempt raised a transient error
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await attempt_fn(attempt)
            except self.retry_on as e:
                last_error = e
                logger.warning(
                    f"{description} attempt {attempt}/{self.max_attempts} failed: {e}"
                )
                if self.on_retry:
                    self.on_retry(attempt, e)
                if attempt < self.max_attempts:
                    await self.sleep(self.get_delay(attempt))

        raise RetryBudgetExhausted(self.max_attempts, last_error)
