from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try an operation and how long to wait in between.

    `linear=False` waits `delay_s` before every retry (fixed backoff);
    `linear=True` waits `delay_s * attempt` (1.5s, 3s, ... for Graph calls).
    """

    max_attempts: int = 3
    delay_s: float = 5.0
    linear: bool = False

    @classmethod
    def fixed(cls, max_attempts: int, delay_s: float) -> "RetryPolicy":
        return cls(max_attempts=max(1, int(max_attempts)), delay_s=float(delay_s), linear=False)

    @classmethod
    def linear_backoff(cls, max_attempts: int, delay_s: float) -> "RetryPolicy":
        return cls(max_attempts=max(1, int(max_attempts)), delay_s=float(delay_s), linear=True)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        if self.linear:
            return self.delay_s * attempt
        return self.delay_s


def run_with_retry(
    operation: Callable[[int], T],
    policy: RetryPolicy,
    *,
    is_retryable: Callable[[Exception], bool],
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """Call `operation(attempt)` until it returns, retrying per `policy`.

    Non-retryable errors and the error from the final attempt propagate
    unchanged.
    """
    attempt = 1
    while True:
        try:
            return operation(attempt)
        except Exception as e:
            if attempt >= policy.max_attempts or not is_retryable(e):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "[Retry] %s attempt %d/%d failed: %s (retrying in %.1fs)",
                label,
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            if delay > 0:
                sleep(delay)
            attempt += 1
