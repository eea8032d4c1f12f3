"""Circuit breaker guarding the upstream mail provider.

States:
    CLOSED: normal operation, calls pass through
    OPEN: failing fast, calls rejected without reaching the provider
    HALF_OPEN: reset timeout elapsed, one probe call allowed through

One instance is shared by every caller in the process. State lives only in
memory; a restart starts closed.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from inbox_automation.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure breaker.

    Failures are recorded once per terminal failure of a wrapped call, not per
    retry attempt. A success while closed only bumps the success counter.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None
        self._last_failure_at: datetime | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        self._check_reset_timeout()
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    def _check_reset_timeout(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.reset_timeout:
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._probe_in_flight = False
            logger.warning(
                "Circuit breaker opened",
                previous_state=old_state.value,
                failure_count=self._failure_count,
                reset_timeout=self.reset_timeout,
            )
        elif new_state == CircuitState.HALF_OPEN:
            self._failure_count = 0
            self._probe_in_flight = False
            logger.info("Circuit breaker half-open, allowing probe")
        else:
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None
            self._probe_in_flight = False
            logger.info("Circuit breaker closed", previous_state=old_state.value)

    def allow_request(self) -> bool:
        """Whether a call may reach the provider right now."""
        self._check_reset_timeout()

        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            return False

        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.CLOSED)
            return
        self._success_count += 1

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_at = datetime.now(UTC)

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._transition_to(CircuitState.OPEN)

    def release_probe(self) -> None:
        """Give the half-open slot back when a probe ends without an outcome."""
        self._probe_in_flight = False

    def reset(self) -> None:
        """Force the breaker closed and clear its counters."""
        self._transition_to(CircuitState.CLOSED)
        self._last_failure_at = None

    def status(self) -> dict[str, Any]:
        state = self.state
        return {
            "state": state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "failure_threshold": self.failure_threshold,
            "reset_timeout_seconds": self.reset_timeout,
            "last_failure_at": self._last_failure_at.isoformat() if self._last_failure_at else None,
        }
