"""Exponential backoff with jitter for retry scheduling."""

import random
from dataclasses import dataclass, field
from datetime import timedelta

from relay_engine.common.config import RelaySettings


@dataclass
class BackoffPolicy:
    """``base * 2**attempts`` seconds, capped at ``cap``, plus up to
    ``jitter_ratio`` of the capped delay as random jitter.

    With ``jitter_ratio < 1`` the delay for ``attempts + 1`` is never shorter
    than the delay for ``attempts`` while both are below the cap.
    """

    base: float = 30.0
    cap: float = 21600.0
    jitter_ratio: float = 0.1
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "BackoffPolicy":
        return cls(
            base=settings.backoff_base_seconds,
            cap=settings.backoff_max_seconds,
            jitter_ratio=settings.backoff_jitter_ratio,
        )

    def base_delay(self, attempts: int) -> float:
        """Delay in seconds before jitter."""
        # Cap the exponent so huge attempt counts cannot overflow a float.
        exponent = min(max(attempts, 0), 62)
        return min(self.base * (2 ** exponent), self.cap)

    def delay(self, attempts: int) -> timedelta:
        seconds = self.base_delay(attempts)
        if self.jitter_ratio > 0:
            seconds += self.rng.uniform(0, seconds * self.jitter_ratio)
        return timedelta(seconds=seconds)
