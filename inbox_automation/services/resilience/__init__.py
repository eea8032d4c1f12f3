from .circuit_breaker import CircuitBreaker, CircuitState
from .errors import MailErrorKind, MailServiceError, classify_error
from .retry import RetryPolicy
from .service import CallResult, ResilienceService

__all__ = [
    "CallResult",
    "CircuitBreaker",
    "CircuitState",
    "MailErrorKind",
    "MailServiceError",
    "ResilienceService",
    "RetryPolicy",
    "classify_error",
]
