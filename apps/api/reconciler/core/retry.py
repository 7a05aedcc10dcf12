"""Retry policy with exponential backoff for outbound integrations."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from reconciler.core.errors import TransientExternalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff and jitter.

    ``max_attempts`` counts the first call, so ``max_attempts=4`` means three
    retries. ``max_elapsed`` caps the total time spent (calls plus sleeps);
    when the next sleep would cross it, the last error is raised instead.
    Only exceptions listed in ``retry_on`` are retried.
    """

    max_attempts: int = 4
    base_delay: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.5
    max_elapsed: float | None = None
    retry_on: tuple[type[BaseException], ...] = (TransientExternalError,)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    @classmethod
    def from_retries(cls, retries: int, **kwargs) -> "RetryPolicy":
        """Build a policy from a retry count (attempts = retries + 1)."""
        return cls(max_attempts=max(1, retries + 1), **kwargs)

    def compute_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is zero-based)."""
        delay = self.base_delay * (2**attempt)
        if delay and self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return min(self.max_delay, delay)

    async def run(self, fn: Callable[[], Awaitable[T]], *, operation: str = "call") -> T:
        """Execute ``fn`` under this policy and return its result."""
        started = time.monotonic()

        for attempt in range(self.max_attempts):
            try:
                return await fn()
            except self.retry_on as exc:
                if attempt >= self.max_attempts - 1:
                    logger.warning(
                        "%s failed after %s attempts", operation, attempt + 1
                    )
                    raise

                delay = self.compute_delay(attempt)
                if self.max_elapsed is not None:
                    elapsed = time.monotonic() - started
                    if elapsed + delay > self.max_elapsed:
                        logger.warning(
                            "%s giving up after %.1fs (elapsed cap %.1fs)",
                            operation,
                            elapsed,
                            self.max_elapsed,
                        )
                        raise

                logger.warning(
                    "%s attempt %s/%s failed, retrying in %.2fs: %s",
                    operation,
                    attempt + 1,
                    self.max_attempts,
                    delay,
                    exc,
                )
                if delay:
                    await self.sleep(delay)

        raise RuntimeError("RetryPolicy.max_attempts must be at least 1")
