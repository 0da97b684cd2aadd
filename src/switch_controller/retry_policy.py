"""Reconnect delay policies.

The default is a fixed interval between broker connect attempts. Exponential
backoff with jitter is available for deployments with many devices sharing one
broker; its delay never drops below the fixed interval.
"""

from __future__ import annotations

import random
from typing import Protocol


class RetryPolicy(Protocol):
    def get_delay_ms(self, attempt: int) -> float:
        """Milliseconds to wait before the next attempt (attempt is 1-indexed)."""
        ...


class FixedIntervalPolicy:
    """Same delay for every attempt."""

    def __init__(self, interval_ms: int):
        self.interval_ms = interval_ms

    def get_delay_ms(self, attempt: int) -> float:
        return float(self.interval_ms)

    def __repr__(self) -> str:
        return f"FixedIntervalPolicy(interval={self.interval_ms}ms)"


class BackoffPolicy:
    """Exponential backoff with jitter, bounded below by the base interval.

    Formula: min(base * 2 ** (attempt - 1), max) + jitter
    Jitter: random value between 0 and delay * jitter_factor
    """

    def __init__(
        self,
        base_delay_ms: int,
        max_delay_ms: int,
        jitter_factor: float = 0.1,
    ):
        """Initialize backoff policy.

        Args:
            base_delay_ms: Delay for the first retry, also the floor for every retry
            max_delay_ms: Cap before jitter is added
            jitter_factor: Jitter as fraction of delay (default: 0.1 = 10%)
        """
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max(max_delay_ms, base_delay_ms)
        self.jitter_factor = jitter_factor

    def get_delay_ms(self, attempt: int) -> float:
        exponent = max(attempt - 1, 0)
        # cap the exponent so huge attempt counts don't overflow into floats
        delay = self.base_delay_ms * (2 ** min(exponent, 32))
        delay = min(delay, self.max_delay_ms)
        jitter = random.uniform(0, delay * self.jitter_factor)
        return float(delay + jitter)

    def __repr__(self) -> str:
        return (
            f"BackoffPolicy(base_delay={self.base_delay_ms}ms, "
            f"max_delay={self.max_delay_ms}ms, "
            f"jitter_factor={self.jitter_factor})"
        )
