"""
Retry + circuit-breaker wrapper for single upstream mail calls.

Every provider call made by the mailbox gateway goes through
``ResilienceService.execute_with_retry``. The service never looks at business
semantics: it only classifies, waits, retries and re-raises.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.services.resilience.circuit_breaker import CircuitBreaker
from inbox_automation.services.resilience.errors import (
    MailErrorKind,
    MailServiceError,
    classify_error,
)
from inbox_automation.services.resilience.retry import RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CallResult(Generic[T]):
    """Outcome of a wrapped call as a value: either ``value`` or a classified ``error``."""

    value: T | None = None
    error: MailServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


class ResilienceService:
    """
    Bounded retry with exponential backoff, guarded by one circuit breaker.

    The whole ``execute_with_retry`` invocation counts as one breaker outcome:
    retries inside it do not trip the breaker, only the terminal result does.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self.breaker = breaker or CircuitBreaker()
        self._sleep = sleep
        self._rng = rng

    async def execute_with_retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        """
        Run ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            label: Operation name for logs and the fail-fast message

        Returns:
            Whatever the operation returns

        Raises:
            MailServiceError: The last classified error once retries are exhausted,
                or a synthetic NETWORK_ERROR when the breaker rejects the call
        """
        if not self.breaker.allow_request():
            logger.warning("Circuit breaker open, failing fast", operation=label)
            raise MailServiceError(
                MailErrorKind.NETWORK_ERROR,
                f"Circuit breaker is open, {label} not attempted",
                retryable=False,
            )

        attempt = 0
        while True:
            try:
                result = await operation()
            except asyncio.CancelledError:
                self.breaker.release_probe()
                raise
            except Exception as e:
                error = classify_error(e)

                if self.policy.should_retry(error, attempt):
                    delay = self.policy.compute_delay(attempt, error.retry_after, self._rng)
                    logger.warning(
                        "Upstream call failed, retrying",
                        operation=label,
                        attempt=attempt + 1,
                        max_retries=self.policy.max_retries,
                        error_kind=error.kind.value,
                        delay_seconds=round(delay, 3),
                    )
                    try:
                        await self._sleep(delay)
                    except asyncio.CancelledError:
                        self.breaker.release_probe()
                        raise
                    attempt += 1
                    continue

                self.breaker.record_failure()
                logger.error(
                    "Upstream call failed",
                    operation=label,
                    attempts=attempt + 1,
                    error_kind=error.kind.value,
                    error=error.message,
                )
                if error is e:
                    raise
                raise error from e

            self.breaker.record_success()
            if attempt:
                logger.info("Upstream call succeeded after retry", operation=label, attempts=attempt + 1)
            return result

    async def try_execute(self, operation: Callable[[], Awaitable[T]], label: str) -> CallResult[T]:
        """Same as ``execute_with_retry`` but returns the failure as a value."""
        try:
            return CallResult(value=await self.execute_with_retry(operation, label))
        except MailServiceError as e:
            return CallResult(error=e)

    def status(self) -> dict[str, Any]:
        return {
            "circuit_breaker": self.breaker.status(),
            "retry_policy": {
                "max_retries": self.policy.max_retries,
                "base_delay_seconds": self.policy.base_delay,
                "max_delay_seconds": self.policy.max_delay,
                "backoff_factor": self.policy.backoff_factor,
                "retryable_kinds": sorted(kind.value for kind in self.policy.retryable_kinds),
            },
        }

    def reset(self) -> None:
        self.breaker.reset()
