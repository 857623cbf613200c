"""
Retry policy for transient transport failures.

Delays grow exponentially (``base_delay * backoff_factor ** attempt``),
are capped at ``max_delay`` and spread by a random jitter factor so that
concurrent clients do not retry in lockstep. A server-supplied
``retry_after`` takes precedence over the computed backoff.
"""

import random
from typing import Optional

from ..config import RetryConfig
from ..errors import RateLimited, TransportError, TransportTransient


class RetryPolicy:
    """
    Decides whether a failed fetch is retried and how long to wait first.

    Attempts are counted from 0: ``attempt`` is the number of retries that
    have already happened when the current failure occurred.
    """

    def __init__(self, config: Optional[RetryConfig] = None, rng: Optional[random.Random] = None):
        """
        Initialize retry policy.

        Args:
            config: Backoff settings (defaults to ``RetryConfig()``)
            rng: Random source for jitter (injectable for deterministic tests)
        """
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()

    @property
    def max_attempts(self) -> int:
        return self.config.max_retries + 1

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, TransportTransient)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """True if ``error`` is transient and the retry budget is not spent."""
        return self.is_retryable(error) and attempt < self.config.max_retries

    def compute_delay(self, attempt: int, error: Optional[TransportError] = None) -> float:
        """Seconds to wait before retry number ``attempt + 1``."""
        cap = self.config.max_delay
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return max(0.0, min(float(error.retry_after), cap))

        backoff = min(self.config.base_delay * self.config.backoff_factor ** attempt, cap)
        low, high = self.config.jitter
        return backoff * self._rng.uniform(low, high)

    def __repr__(self) -> str:
        return (f"RetryPolicy(max_retries={self.config.max_retries}, "
                f"base_delay={self.config.base_delay}, max_delay={self.config.max_delay})")
