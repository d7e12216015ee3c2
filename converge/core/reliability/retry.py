"""
Retry policy — exponential backoff with jitter.

Only network-sourced resource kinds are retried, and only on transient
failures (timeouts, connection resets, busy servers). Integrity and
permanent failures are recorded on the first attempt.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """How many times to retry, and how long to wait in between.

    Args:
        max_retries: Retries after the initial attempt (0 disables retry).
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any single delay.
        jitter: Fraction of the delay added as random jitter.
        sleep: Sleep function, replaceable in tests.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.3
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @property
    def max_attempts(self) -> int:
        """Total attempts including the first one."""
        return 1 + self.max_retries

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)

    def wait(self, attempt: int, label: str = "") -> float:
        """Sleep before retry number ``attempt`` and return the delay used."""
        delay = self.delay_for(attempt)
        logger.debug(
            "Retrying %s: attempt %d/%d in %.1fs",
            label or "action",
            attempt + 1,
            self.max_attempts,
            delay,
        )
        self.sleep(delay)
        return delay


NO_RETRY = RetryPolicy(max_retries=0)
