"""
Core Circuit Breaker implementation.

This module contains the CircuitBreaker class that guards a single callable,
typically one method of an AI provider client, against cascading failures.

The circuit breaker operates as a state machine with three states:
- CLOSED: Normal operation, calls flow through and counted failures
  accumulate in a rolling window
- OPEN: Too many failures, calls are short-circuited to a fallback or a
  CircuitBreakerOpenError without invoking the callable
- HALF_OPEN: Cooldown elapsed, a single probe call tests recovery

State is owned by one breaker and one event loop; it is never shared across
processes. No lock is taken: every state change happens between awaits.
"""

import inspect
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from resilience_backbone.core.config import Settings
from resilience_backbone.core.logging import StructuredLogger, get_logger

from .classification import categorize_error, error_code_of
from .exceptions import CircuitBreakerConfigurationError, CircuitBreakerOpenError

Clock = Callable[[], float]


class CircuitBreakerState(Enum):
    """
    Circuit breaker state enumeration.

    States:
        CLOSED: Normal operation - calls pass through to the dependency
        OPEN: Failing fast - calls are short-circuited
        HALF_OPEN: Recovery testing - one probe call is allowed
    """
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class BreakerEvent(str, Enum):
    """Lifecycle notifications a breaker emits to its listeners."""
    OPEN = "open"
    CLOSE = "close"
    HALF_OPEN = "half_open"
    SUCCESS = "success"
    FAILURE = "failure"
    IGNORED = "ignored"
    REJECT = "reject"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class BreakerEventInfo:
    """Payload passed to breaker listeners."""
    event: BreakerEvent
    breaker_name: str
    state: CircuitBreakerState
    error: Optional[BaseException] = None
    latency_ms: Optional[float] = None


Listener = Callable[[BreakerEventInfo], Any]


@dataclass
class CircuitBreakerConfig:
    """
    Configuration class for circuit breaker behavior.

    One config is typically shared by every breaker a factory creates for a
    client; each breaker still keeps its own state.
    """

    failure_threshold: int = 5
    """Counted failures within the rolling window that open the circuit"""

    success_threshold: int = 1
    """Successful half-open probes needed to close the circuit"""

    timeout_seconds: float = 10.0
    """Cooldown between opening and letting a probe through"""

    rolling_window_seconds: float = 60.0
    """Length of the window failures are counted in"""

    ignored_error_codes: FrozenSet[str] = field(default_factory=frozenset)
    """Error codes that are re-raised without counting as failures"""

    def __post_init__(self):
        """Normalize and validate configuration values after initialization."""
        self.ignored_error_codes = frozenset(self.ignored_error_codes)
        self._validate_config()

    def _validate_config(self):
        """
        Validate configuration parameters for consistency and sanity.

        Raises:
            CircuitBreakerConfigurationError: If configuration is invalid
        """
        if self.failure_threshold < 1:
            raise CircuitBreakerConfigurationError(
                "failure_threshold must be >= 1",
                config_field="failure_threshold",
                provided_value=self.failure_threshold
            )

        if self.success_threshold < 1:
            raise CircuitBreakerConfigurationError(
                "success_threshold must be >= 1",
                config_field="success_threshold",
                provided_value=self.success_threshold
            )

        if self.timeout_seconds <= 0:
            raise CircuitBreakerConfigurationError(
                "timeout_seconds must be > 0",
                config_field="timeout_seconds",
                provided_value=self.timeout_seconds
            )

        if self.rolling_window_seconds <= 0:
            raise CircuitBreakerConfigurationError(
                "rolling_window_seconds must be > 0",
                config_field="rolling_window_seconds",
                provided_value=self.rolling_window_seconds
            )

        if not all(isinstance(code, str) for code in self.ignored_error_codes):
            raise CircuitBreakerConfigurationError(
                "ignored_error_codes must contain strings",
                config_field="ignored_error_codes",
                provided_value=sorted(map(repr, self.ignored_error_codes))
            )

    def with_overrides(self, ignored_error_codes: Optional[Iterable[str]] = None,
                       **overrides: Any) -> "CircuitBreakerConfig":
        """Return a copy with some fields replaced; extra ignored codes are merged in."""
        if ignored_error_codes is not None:
            overrides["ignored_error_codes"] = self.ignored_error_codes | frozenset(ignored_error_codes)
        return replace(self, **overrides)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.BREAKER_FAILURE_THRESHOLD,
            success_threshold=settings.BREAKER_SUCCESS_THRESHOLD,
            timeout_seconds=settings.BREAKER_TIMEOUT_SECONDS,
            rolling_window_seconds=settings.BREAKER_ROLLING_WINDOW_SECONDS,
            ignored_error_codes=frozenset(settings.BREAKER_IGNORED_ERROR_CODES)
        )


class CircuitBreaker:
    """
    Circuit breaker guarding one callable.

    ``fire`` invokes the wrapped callable (awaiting it if it returns an
    awaitable) and always surfaces its real result or error. Only while the
    circuit is open does the control flow change: the callable is skipped and
    the fallback result, or a CircuitBreakerOpenError, is returned instead.

    Usage:
        config = CircuitBreakerConfig(failure_threshold=3, timeout_seconds=30)
        breaker = CircuitBreaker(client.create_completion, "ai:create_completion", config)
        breaker.fallback(lambda *args, **kwargs: {"content": "", "degraded": True})
        breaker.on("open", lambda info: alert(info.breaker_name))

        result = await breaker.fire(prompt="...")
    """

    def __init__(self,
                 fn: Callable[..., Any],
                 name: Optional[str] = None,
                 config: Optional[CircuitBreakerConfig] = None,
                 clock: Clock = time.monotonic,
                 logger: Optional[StructuredLogger] = None):
        """
        Initialize circuit breaker.

        Args:
            fn: The callable to guard; may be sync or async
            name: Identifier used in logs and health reports
            config: Configuration object, uses defaults if not provided
            clock: Monotonic time source in seconds
            logger: Logging collaborator, defaults to a structlog logger
        """
        if not callable(fn):
            raise CircuitBreakerConfigurationError(
                "Circuit breaker target must be callable",
                config_field="fn",
                provided_value=repr(fn)
            )

        self.name = name or getattr(fn, "__qualname__", None) or repr(fn)
        self.config = config or CircuitBreakerConfig()
        self._fn = fn
        self._clock = clock
        self.logger = logger or get_logger(__name__)

        self._fallback: Optional[Callable[..., Any]] = None
        self._listeners: Dict[BreakerEvent, List[Listener]] = {}

        # State machine
        self._state = CircuitBreakerState.CLOSED
        self.failures_in_window = 0
        self.window_started_at: Optional[float] = None
        self.opened_at: Optional[float] = None
        self.consecutive_probe_successes = 0
        self._probe_in_flight = False

        # Cumulative statistics
        self.total_calls = 0
        self.total_successes = 0
        self.total_failures = 0
        self.total_ignored = 0
        self.total_rejects = 0
        self.total_fallbacks = 0
        self.total_trips = 0
        self._total_latency_ms = 0.0
        self.last_error: Optional[BaseException] = None
        self.last_failure_time: Optional[float] = None
        self.last_state_change_time = self._clock()

        self.logger.info(
            "Circuit breaker initialized",
            breaker=self.name,
            failure_threshold=self.config.failure_threshold,
            success_threshold=self.config.success_threshold,
            timeout_seconds=self.config.timeout_seconds,
            rolling_window_seconds=self.config.rolling_window_seconds,
            ignored_error_codes=sorted(self.config.ignored_error_codes)
        )

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def target(self) -> Callable[..., Any]:
        """The guarded callable."""
        return self._fn

    @property
    def is_open(self) -> bool:
        return self._state == CircuitBreakerState.OPEN

    def fallback(self, fn: Callable[..., Any]) -> "CircuitBreaker":
        """
        Register a substitute called with the same arguments while the circuit is open.

        Returns the breaker so registration can be chained.
        """
        if not callable(fn):
            raise CircuitBreakerConfigurationError(
                "Fallback must be callable",
                config_field="fallback",
                provided_value=repr(fn)
            )
        self._fallback = fn
        return self

    def on(self, event: Union[BreakerEvent, str], callback: Listener) -> "CircuitBreaker":
        """
        Subscribe to a lifecycle event.

        Callbacks are synchronous and receive a BreakerEventInfo. A callback
        that raises is logged and otherwise ignored.
        """
        self._listeners.setdefault(BreakerEvent(event), []).append(callback)
        return self

    async def fire(self, *args: Any, **kwargs: Any) -> Any:
        """
        Invoke the guarded callable through the breaker.

        Raises:
            CircuitBreakerOpenError: If the circuit is open and no fallback is registered
            Exception: Whatever the guarded callable raised, unchanged
        """
        if not self._admit(self._clock()):
            return await self._short_circuit(args, kwargs)

        probing = self._state == CircuitBreakerState.HALF_OPEN
        self.total_calls += 1
        start_time = time.perf_counter()

        try:
            result = self._fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._record_error(e, probing, (time.perf_counter() - start_time) * 1000)
            raise
        finally:
            if probing:
                self._probe_in_flight = False

        self._record_success(probing, (time.perf_counter() - start_time) * 1000)
        return result

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return await self.fire(*args, **kwargs)

    def _admit(self, now: float) -> bool:
        """Decide whether a call may reach the guarded callable, moving OPEN to HALF_OPEN when due."""
        if self._state == CircuitBreakerState.OPEN:
            if self.opened_at is not None and now - self.opened_at < self.config.timeout_seconds:
                return False
            self._transition_to_half_open()
            self._probe_in_flight = True
            return True

        if self._state == CircuitBreakerState.HALF_OPEN:
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

        return True

    async def _short_circuit(self, args: tuple, kwargs: Dict[str, Any]) -> Any:
        self.total_rejects += 1
        cooldown_remaining = self.cooldown_remaining()

        self.logger.warning(
            "Circuit breaker rejected call",
            breaker=self.name,
            state=self._state.value,
            cooldown_remaining=cooldown_remaining,
            total_rejects=self.total_rejects
        )
        self._emit(BreakerEvent.REJECT)

        if self._fallback is None:
            raise CircuitBreakerOpenError(
                f"Circuit breaker is open: {self.name}",
                breaker_name=self.name,
                cooldown_remaining=cooldown_remaining,
                total_failures=self.total_failures,
                last_failure_time=self.last_failure_time
            )

        self.total_fallbacks += 1
        self.logger.info("Circuit breaker used fallback", breaker=self.name, state=self._state.value)
        self._emit(BreakerEvent.FALLBACK)

        result = self._fallback(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _record_success(self, probing: bool, latency_ms: float) -> None:
        self.total_successes += 1
        self._total_latency_ms += latency_ms

        self.logger.debug(
            "Circuit breaker recorded success",
            breaker=self.name,
            latency_ms=latency_ms,
            state=self._state.value
        )
        self._emit(BreakerEvent.SUCCESS, latency_ms=latency_ms)

        if probing and self._state == CircuitBreakerState.HALF_OPEN:
            self.consecutive_probe_successes += 1
            if self.consecutive_probe_successes >= self.config.success_threshold:
                self._close_circuit()

    def _record_error(self, error: Exception, probing: bool, latency_ms: float) -> None:
        self._total_latency_ms += latency_ms
        error_code = error_code_of(error)

        if error_code is not None and error_code in self.config.ignored_error_codes:
            self.total_ignored += 1
            self.logger.debug(
                "Circuit breaker ignoring classified error",
                breaker=self.name,
                error_code=error_code,
                error_message=str(error)
            )
            self._emit(BreakerEvent.IGNORED, error=error, latency_ms=latency_ms)
            return

        now = self._clock()
        self.total_failures += 1
        self.last_error = error
        self.last_failure_time = now

        self.logger.error(
            "Circuit breaker operation failed",
            breaker=self.name,
            error=str(error),
            error_code=error_code,
            error_category=categorize_error(error),
            state=self._state.value,
            failures_in_window=self.failures_in_window
        )
        self._emit(BreakerEvent.FAILURE, error=error, latency_ms=latency_ms)

        if probing and self._state == CircuitBreakerState.HALF_OPEN:
            self.logger.warning("Circuit breaker probe failed - reopening", breaker=self.name)
            self._open_circuit(now)
            return

        if self._state != CircuitBreakerState.CLOSED:
            # Admitted while closed but the circuit opened meanwhile
            return

        if self.window_started_at is None or now - self.window_started_at >= self.config.rolling_window_seconds:
            self.window_started_at = now
            self.failures_in_window = 0

        self.failures_in_window += 1
        if self.failures_in_window >= self.config.failure_threshold:
            self._open_circuit(now)

    def _open_circuit(self, now: float) -> None:
        """Transition to OPEN and start the cooldown at ``now``."""
        old_state = self._state
        self._state = CircuitBreakerState.OPEN
        self.opened_at = now
        self.consecutive_probe_successes = 0
        self.total_trips += 1
        self.last_state_change_time = now

        self.logger.warning(
            "Circuit breaker opened",
            breaker=self.name,
            previous_state=old_state.value,
            failures_in_window=self.failures_in_window,
            cooldown_seconds=self.config.timeout_seconds,
            total_trips=self.total_trips,
            last_error=str(self.last_error) if self.last_error else None,
            last_error_category=categorize_error(self.last_error)
        )
        self._emit(BreakerEvent.OPEN, error=self.last_error)

    def _transition_to_half_open(self) -> None:
        old_state = self._state
        self._state = CircuitBreakerState.HALF_OPEN
        self.consecutive_probe_successes = 0
        self._probe_in_flight = False
        self.last_state_change_time = self._clock()

        self.logger.info(
            "Circuit breaker entering half-open state for recovery testing",
            breaker=self.name,
            previous_state=old_state.value,
            required_successes=self.config.success_threshold
        )
        self._emit(BreakerEvent.HALF_OPEN)

    def _close_circuit(self) -> None:
        old_state = self._state
        self._state = CircuitBreakerState.CLOSED
        self.failures_in_window = 0
        self.window_started_at = None
        self.opened_at = None
        self.consecutive_probe_successes = 0
        self._probe_in_flight = False
        self.last_state_change_time = self._clock()

        self.logger.info(
            "Circuit breaker closed - dependency recovered",
            breaker=self.name,
            previous_state=old_state.value
        )
        self._emit(BreakerEvent.CLOSE)

    def _emit(self, event: BreakerEvent, error: Optional[BaseException] = None,
              latency_ms: Optional[float] = None) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return

        info = BreakerEventInfo(
            event=event,
            breaker_name=self.name,
            state=self._state,
            error=error,
            latency_ms=latency_ms
        )
        for callback in list(listeners):
            try:
                callback(info)
            except Exception as e:
                self.logger.error(
                    "Circuit breaker listener failed",
                    breaker=self.name,
                    breaker_event=event.value,
                    error=str(e),
                    exc_info=True
                )

    def cooldown_remaining(self) -> float:
        """Seconds until an open circuit lets a probe through, 0 otherwise."""
        if self._state != CircuitBreakerState.OPEN or self.opened_at is None:
            return 0.0
        return max(0.0, self.opened_at + self.config.timeout_seconds - self._clock())

    def get_stats(self) -> Dict[str, Any]:
        """
        Get comprehensive statistics about circuit breaker performance.

        Returns:
            Dictionary containing current state and performance metrics
        """
        now = self._clock()
        return {
            "breaker_name": self.name,
            "state": self._state.value,
            "state_duration_seconds": now - self.last_state_change_time,

            # Call statistics
            "total_calls": self.total_calls,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "total_ignored": self.total_ignored,
            "total_rejects": self.total_rejects,
            "total_fallbacks": self.total_fallbacks,
            "total_trips": self.total_trips,

            # State machine
            "failures_in_window": self.failures_in_window,
            "window_started_at": self.window_started_at,
            "opened_at": self.opened_at,
            "consecutive_probe_successes": self.consecutive_probe_successes,
            "cooldown_remaining_seconds": self.cooldown_remaining(),
            "last_failure_time": self.last_failure_time,

            # Configuration
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "success_threshold": self.config.success_threshold,
                "timeout_seconds": self.config.timeout_seconds,
                "rolling_window_seconds": self.config.rolling_window_seconds,
                "ignored_error_codes": sorted(self.config.ignored_error_codes)
            }
        }

    def get_health(self) -> Dict[str, Any]:
        """Health status with outcome percentages, suitable for health endpoints."""
        total = self.total_successes + self.total_failures + self.total_rejects
        invoked = self.total_successes + self.total_failures + self.total_ignored

        def percent(count: int) -> float:
            return round(count / total * 100, 2) if total else 0.0

        return {
            "name": self.name,
            "state": self._state.value,
            "healthy": self._state != CircuitBreakerState.OPEN,
            "metrics": {
                "total": total,
                "successes": self.total_successes,
                "failures": self.total_failures,
                "rejects": self.total_rejects,
                "ignored": self.total_ignored,
                "percentiles": {
                    "success": percent(self.total_successes) if total else 100.0,
                    "failure": percent(self.total_failures),
                    "rejection": percent(self.total_rejects)
                },
                "latency": {
                    "mean": self._total_latency_ms / invoked if invoked else 0.0
                }
            },
            "last_error": str(self.last_error) if self.last_error else None,
            "last_error_category": categorize_error(self.last_error) if self.last_error else None,
            "last_failure_time": self.last_failure_time
        }

    def force_state(self, state: Union[CircuitBreakerState, str]) -> None:
        """Force the circuit into a state, emitting the matching lifecycle event."""
        target = CircuitBreakerState(state)
        previous = self._state

        if target == CircuitBreakerState.OPEN:
            self._open_circuit(self._clock())
        elif target == CircuitBreakerState.CLOSED:
            self._close_circuit()
        else:
            self._transition_to_half_open()

        self.logger.warning(
            "Circuit breaker state manually forced",
            breaker=self.name,
            previous_state=previous.value,
            new_state=target.value
        )

    def reset(self) -> None:
        """
        Manually reset circuit breaker to closed state.

        This is useful for administrative purposes or when you know
        the dependency has recovered.
        """
        if self._state != CircuitBreakerState.CLOSED:
            self._close_circuit()
        else:
            self.failures_in_window = 0
            self.window_started_at = None

        self.logger.info("Circuit breaker manually reset to closed state", breaker=self.name)

    def reset_stats(self) -> None:
        """Zero the cumulative statistics without touching the state machine."""
        self.total_calls = 0
        self.total_successes = 0
        self.total_failures = 0
        self.total_ignored = 0
        self.total_rejects = 0
        self.total_fallbacks = 0
        self.total_trips = 0
        self._total_latency_ms = 0.0
        self.last_error = None
        self.last_failure_time = None
        self.logger.info("Circuit breaker statistics reset", breaker=self.name)


def wrap(fn: Callable[..., Any],
         name: Optional[str] = None,
         config: Optional[CircuitBreakerConfig] = None,
         clock: Clock = time.monotonic,
         logger: Optional[StructuredLogger] = None) -> CircuitBreaker:
    """Guard ``fn`` with a new circuit breaker."""
    return CircuitBreaker(fn, name=name, config=config, clock=clock, logger=logger)
