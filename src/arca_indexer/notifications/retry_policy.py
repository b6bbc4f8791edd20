"""Bounded exponential-backoff retry for notification delivery."""

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Retry a delivery action a bounded number of times.

    The delay before retry n (1-based) is base_delay * 2**(n-1): with the
    defaults, 1s after the first failure and 2s after the second. Sleeping
    blocks the calling thread, so this must only run on dispatch workers.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given failed attempt (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))

    def execute(self, action: Callable[[], None], description: str = "delivery") -> bool:
        """
        Run action until it succeeds or attempts are exhausted.

        Args:
            action: Delivery callable; any exception counts as a failed attempt
            description: Human-readable label for logs

        Returns:
            True if an attempt succeeded, False after exhaustion. Never raises.
        """
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                action()
            except Exception as e:
                last_error = e
                logger.debug(f"Attempt {attempt}/{self.max_attempts} failed for {description}: {e}")
                if attempt < self.max_attempts:
                    self._sleep(self.delay_for(attempt))
                continue

            if attempt > 1:
                logger.info(f"{description} succeeded on attempt {attempt}/{self.max_attempts}")
            return True

        logger.warning(
            f"All {self.max_attempts} delivery attempts exhausted for {description}. "
            f"Last error: {last_error}"
        )
        return False
