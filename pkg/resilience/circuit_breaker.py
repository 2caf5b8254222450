"""
Circuit Breaker implementation.

Fails fast when an external collaborator (event bus, storage) keeps
failing, instead of piling up timed-out calls.
"""
import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pkg.logger.logger import get_logger


logger = get_logger(__name__)


T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, rejecting calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerError(Exception):
    """Exception raised when circuit breaker is open."""

    retryable = True

    def __init__(self, name: str, message: Optional[str] = None) -> None:
        """
        Initialize circuit breaker error.

        Args:
            name: Name of the circuit that rejected the call.
            message: Error message.
        """
        self.name = name
        self.message = message or f"Circuit breaker '{name}' is open"
        super().__init__(self.message)


class CircuitBreaker:
    """
    Circuit Breaker implementation.

    States:
    - CLOSED: calls pass through, failures are counted.
    - OPEN: calls are rejected until ``recovery_timeout`` elapses.
    - HALF_OPEN: a limited number of trial calls decide whether to close.

    Only exceptions listed in ``tracked_exceptions`` count as failures, so
    business errors raised by the wrapped call do not open the circuit.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
        tracked_exceptions: tuple[type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the circuit breaker.

        Args:
            name: Circuit breaker name for logging.
            failure_threshold: Consecutive failures that open the circuit.
            recovery_timeout: Seconds before a trial call is allowed.
            half_open_max_calls: Max trial calls in half-open state.
            tracked_exceptions: Exception types that count as failures.
            clock: Monotonic time source.
        """
        self._name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max_calls = half_open_max_calls
        self._tracked = tracked_exceptions
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Get current failure count."""
        return self._failure_count

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute an async function through the circuit breaker.

        Args:
            func: Async function to execute.
            *args: Function arguments.
            **kwargs: Function keyword arguments.

        Returns:
            Function result.

        Raises:
            CircuitBreakerError: If circuit is open.
        """
        async with self._lock:
            self._maybe_half_open()

            if self._state == CircuitState.OPEN:
                logger.warning("Circuit breaker is open, rejecting call", circuit=self._name)
                raise CircuitBreakerError(self._name)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self._half_open_max_calls:
                    raise CircuitBreakerError(
                        self._name,
                        f"Circuit breaker '{self._name}' is half-open, max trial calls reached",
                    )
                self._half_open_calls += 1

        try:
            result = await func(*args, **kwargs)
        except self._tracked:
            await self._on_failure()
            raise
        await self._on_success()
        return result

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        elapsed = self._clock() - self._opened_at
        if elapsed >= self._recovery_timeout:
            logger.info(
                "Circuit breaker transitioning to half-open",
                circuit=self._name,
                elapsed=elapsed,
            )
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("Circuit breaker closing after successful trial call", circuit=self._name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0
            self._opened_at = None

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                logger.warning("Circuit breaker re-opening after failed trial call", circuit=self._name)
                self._open()
            elif self._failure_count >= self._failure_threshold:
                logger.warning(
                    "Circuit breaker opening after threshold exceeded",
                    circuit=self._name,
                    failures=self._failure_count,
                    threshold=self._failure_threshold,
                )
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()

    def reset(self) -> None:
        """Reset the circuit breaker to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._half_open_calls = 0
        logger.info("Circuit breaker reset", circuit=self._name)
