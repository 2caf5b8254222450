"""
Resilience package.
"""
from .circuit_breaker import CircuitBreaker, CircuitBreakerError, CircuitState
from .keyed_lock import KeyedLock
from .retry import is_retryable, retry_async, with_timeout

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerError",
    "CircuitState",
    "KeyedLock",
    "is_retryable",
    "retry_async",
    "with_timeout",
]
