"""Retry policy with exponential backoff and jitter for upstream mail calls.

Example:
    >>> policy = RetryPolicy(max_retries=3, base_delay=1.0, max_delay=30.0)
    >>> policy.compute_delay(attempt=0)  # somewhere in [0.5, 1.0]
"""

import random
from dataclasses import dataclass, field

from inbox_automation.services.resilience.errors import MailErrorKind, MailServiceError

DEFAULT_RETRYABLE_KINDS = frozenset(
    {
        MailErrorKind.RATE_LIMITED,
        MailErrorKind.QUOTA_EXCEEDED,
        MailErrorKind.NETWORK_ERROR,
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry configuration.

    Attributes:
        max_retries: Retries after the first attempt (3 means up to 4 calls)
        base_delay: Delay in seconds before the first retry, before jitter
        max_delay: Upper bound on any computed delay in seconds
        backoff_factor: Exponential multiplier per attempt
        retryable_kinds: Error kinds eligible for retry
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    retryable_kinds: frozenset[MailErrorKind] = field(default=DEFAULT_RETRYABLE_KINDS)

    def should_retry(self, error: MailServiceError, attempt: int) -> bool:
        """``attempt`` is zero-based: 0 is the first call."""
        if attempt >= self.max_retries:
            return False
        return error.retryable and error.kind in self.retryable_kinds

    def compute_delay(
        self,
        attempt: int,
        retry_after: float | None = None,
        rng: random.Random | None = None,
    ) -> float:
        """Seconds to wait before retry ``attempt`` (zero-based).

        A provider-supplied retry-after hint is used verbatim.
        """
        if retry_after is not None:
            return float(retry_after)

        jitter = (rng or random).uniform(0.5, 1.0)
        delay = self.base_delay * (self.backoff_factor**attempt) * jitter
        return min(self.max_delay, delay)
