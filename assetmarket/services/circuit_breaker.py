"""Per-store circuit breaker.

Once a store has failed ``failure_threshold`` calls in a row, the gateway
stops sending it work and fails fast with ``StoreUnavailableError`` until
``recovery_timeout`` has elapsed. After that a few probe calls are let
through (HALF_OPEN); one success closes the circuit again, one failure
re-opens it.
"""

import enum
import logging
import threading
import time

logger = logging.getLogger(__name__)


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit breaker guarding a single store."""

    def __init__(
        self,
        name: str = "store",
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
    ) -> None:
        self.name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max_calls = half_open_max_calls

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    def allow_request(self) -> bool:
        with self._lock:
            state = self._current_state()
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.OPEN:
                return False
            if self._half_open_calls < self._half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._current_state() == CircuitState.HALF_OPEN:
                logger.info("Store '%s' recovered -> CLOSED", self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0

    def record_failure(self) -> None:
        with self._lock:
            state = self._current_state()
            self._failure_count += 1
            if state == CircuitState.HALF_OPEN or self._failure_count >= self._failure_threshold:
                if state != CircuitState.OPEN:
                    logger.warning(
                        "Store '%s' circuit OPEN after %d consecutive failures",
                        self.name, self._failure_count,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                self._half_open_calls = 0

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0
            self._opened_at = 0.0

    def _current_state(self) -> CircuitState:
        # Caller holds self._lock
        if self._state == CircuitState.OPEN and time.monotonic() - self._opened_at >= self._recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
            logger.info("Store '%s' circuit OPEN -> HALF_OPEN", self.name)
        return self._state
