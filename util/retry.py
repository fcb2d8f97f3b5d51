"""
util/retry.py

Small reusable retry policy with exponential backoff.
Each call site picks its own attempts / base delay / factor and the
exception types worth retrying; anything else propagates immediately.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable


logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt):
        """Delay after the given failed attempt (1-based)."""
        return self.base_delay * (self.factor ** (attempt - 1))

    def call(self, fn, *args, retry_on=(Exception,), label="call", **kwargs):
        """Run fn until it succeeds or attempts run out; re-raise the last error."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except retry_on as exc:
                if attempt >= self.max_attempts:
                    logger.warning("%s failed after %d attempts: %s", label, attempt, exc)
                    raise
                delay = self.delay_for(attempt)
                logger.info("%s attempt %d failed (%s); retrying in %.1fs", label, attempt, exc, delay)
                self.sleep(delay)
        raise RuntimeError("RetryPolicy.call: unreachable")
