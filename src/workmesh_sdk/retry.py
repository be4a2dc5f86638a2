"""Reconnection policy for the job notification stream.

Nothing in the SDK retries on its own. A stream only resubscribes when the
caller passes a :class:`ReconnectPolicy`; claim and submit are never retried,
since a timed-out claim may still have succeeded on the coordinator.
"""

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff between resubscription attempts.

    Attributes:
        max_attempts: Consecutive failed connections before giving up
            (``None`` retries forever)
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay
        jitter: Fraction of the delay randomized to spread reconnects
    """

    max_attempts: int | None = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.1

    def __post_init__(self):
        if self.max_attempts is not None and self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

    def should_retry(self, attempt: int) -> bool:
        """Whether failed attempt number ``attempt`` (1-based) may be retried."""
        return self.max_attempts is None or attempt <= self.max_attempts

    def delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay *= 1 - self.jitter * random.random()
        return delay
