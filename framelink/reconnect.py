# =============================================================================
# FrameLink -- Reconnection Policy
# =============================================================================

from __future__ import annotations

import math
import random

from .types import ReconnectConfig


class ReconnectPolicy:
    """Exponential backoff with a cap and additive random jitter.

    ``next_delay(n) = min(base * 2**n, cap) + uniform(0, that * jitter_ratio)``

    Attempts are zero-based: attempt 0 is the first retry.

    Args:
        config: Backoff parameters.  Defaults to :class:`ReconnectConfig`.
        rng: Source of randomness with a ``uniform(a, b)`` method.
    """

    def __init__(
        self,
        config: ReconnectConfig | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or ReconnectConfig()
        self._rng = rng or random.Random()

    def base_delay_for(self, attempt: int) -> float:
        """Capped delay for *attempt*, without jitter."""
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")
        cfg = self.config
        try:
            delay = math.ldexp(cfg.base_delay, attempt)
        except OverflowError:
            delay = cfg.max_delay
        return max(0.0, min(delay, cfg.max_delay))

    def next_delay(self, attempt: int) -> float:
        delay = self.base_delay_for(attempt)
        ratio = max(0.0, self.config.jitter_ratio)
        if ratio and delay:
            delay += self._rng.uniform(0.0, delay * ratio)
        return delay

    def should_retry(self, attempt: int) -> bool:
        max_retries = self.config.max_retries
        if max_retries < 0:
            return True
        return attempt < max_retries

    def max_delay_bound(self) -> float:
        """Largest value :meth:`next_delay` can return."""
        return self.config.max_delay * (1 + max(0.0, self.config.jitter_ratio))
