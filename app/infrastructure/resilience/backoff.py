"""Exponential backoff policy.

Shared by the key pool (credential cooldowns) and the fan-out dispatcher
(retries of transient push failures).
"""

import random
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class BackoffPolicy:
    """Exponential backoff with optional full jitter.

    ``delay(n)`` for the n-th consecutive failure (n >= 1) is
    ``min(base * 2 ** (n - 1), max)``; with jitter enabled a uniform sample
    in ``[0, delay]`` is returned instead.

    Attributes:
        base_delay_seconds: Delay after the first failure
        max_delay_seconds: Cap applied before jitter
        jitter: Use full jitter (uniform in [0, capped delay])
        rng: Source of uniform samples, injectable for tests

    Example:
        policy = BackoffPolicy(base_delay_seconds=30, max_delay_seconds=3600)
        policy.delay(1)  # somewhere in [0, 30]
        policy.delay(12)  # somewhere in [0, 3600]
    """

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    jitter: bool = True
    rng: Callable[[float, float], float] = field(
        default=random.uniform, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")

    def ceiling(self, failures: int) -> float:
        """Return the capped, un-jittered delay for ``failures`` consecutive failures."""
        if failures < 1:
            return 0.0
        # Exponent is bounded so huge streaks cannot overflow the float
        exponent = min(failures - 1, 62)
        return min(self.base_delay_seconds * (2**exponent), self.max_delay_seconds)

    def delay(self, failures: int) -> float:
        """Return the delay in seconds to wait after ``failures`` consecutive failures."""
        ceiling = self.ceiling(failures)
        if not self.jitter or ceiling == 0:
            return ceiling
        return self.rng(0, ceiling)
