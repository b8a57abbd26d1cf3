"""
Circuit Breaker Factory.

This module creates and tracks circuit breakers, and wraps client objects so
that each listed method is guarded by its own breaker.

Isolation is per callable: two methods of the same client share a
configuration but never state, so one method's breaker opening leaves its
siblings available. Every wrap_client call builds fresh breakers, so two
clients of the same class, or one client wrapped twice, never share state.

Example Usage:
    factory = CircuitBreakerFactory(CircuitBreakerConfig(failure_threshold=3))

    ai = factory.wrap_client(
        openai_client,
        methods=["create_completion", "create_embedding"],
        name="openai"
    )
    try:
        completion = await ai.create_completion(prompt="...")
    except CircuitBreakerOpenError as e:
        return {"error": "service_unavailable", "retry_after": e.cooldown_remaining}
"""

import functools
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from resilience_backbone.core.logging import StructuredLogger, get_logger

from .breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState, Clock
from .exceptions import CircuitBreakerConfigurationError


class ProtectedClient:
    """
    Facade over a client whose listed methods run through circuit breakers.

    Listed methods are replaced by async delegates that call
    ``breaker.fire``. Every other attribute, callable or not, is read from the
    wrapped client unmodified.
    """

    def __init__(self, client: Any, breakers: Mapping[str, CircuitBreaker]):
        self._client = client
        self._breakers = dict(breakers)
        for method_name, breaker in self._breakers.items():
            setattr(self, method_name, _make_delegate(getattr(client, method_name), breaker))

    def __getattr__(self, name: str) -> Any:
        # Only reached for attributes not set on the facade itself
        if name.startswith("__") or name in ("_client", "_breakers"):
            raise AttributeError(name)
        return getattr(self._client, name)

    def get_breaker(self, method_name: str) -> CircuitBreaker:
        try:
            return self._breakers[method_name]
        except KeyError:
            raise KeyError(f"Method is not guarded by a circuit breaker: {method_name}") from None

    @property
    def breakers(self) -> Dict[str, CircuitBreaker]:
        return dict(self._breakers)

    @property
    def wrapped_client(self) -> Any:
        return self._client

    def __repr__(self) -> str:
        return f"ProtectedClient({self._client!r}, methods={sorted(self._breakers)})"


def _make_delegate(method: Callable[..., Any], breaker: CircuitBreaker) -> Callable[..., Any]:
    @functools.wraps(method)
    async def delegate(*args: Any, **kwargs: Any) -> Any:
        return await breaker.fire(*args, **kwargs)

    delegate.breaker = breaker
    return delegate


class CircuitBreakerFactory:
    """
    Creates named circuit breakers sharing a default configuration.

    The factory keeps every breaker it creates so health can be reported for
    the whole process. Breakers are process-local.
    """

    def __init__(self,
                 default_config: Optional[CircuitBreakerConfig] = None,
                 clock: Clock = time.monotonic,
                 logger: Optional[StructuredLogger] = None):
        """
        Initialize circuit breaker factory.

        Args:
            default_config: Configuration for breakers created without one
            clock: Monotonic time source handed to every breaker
            logger: Logging collaborator handed to every breaker
        """
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._logger = logger
        self.logger = logger or get_logger(__name__, component="circuit-breaker-factory")
        self._breakers: Dict[str, CircuitBreaker] = {}

    def create(self, fn: Callable[..., Any], name: str,
               config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """
        Create a circuit breaker, or return the existing one with this name.

        Raises:
            CircuitBreakerConfigurationError: If the name already guards a different
                callable, or exists with a different configuration
        """
        existing = self._breakers.get(name)
        if existing is not None:
            if existing.target != fn:
                raise CircuitBreakerConfigurationError(
                    f"Circuit breaker name already guards another callable: {name}",
                    config_field="name",
                    provided_value=name
                )
            if config is not None and config != existing.config:
                raise CircuitBreakerConfigurationError(
                    f"Circuit breaker already exists with a different configuration: {name}",
                    config_field="config",
                    provided_value=name
                )
            return existing

        return self._build(fn, name, config)

    def _build(self, fn: Callable[..., Any], name: str,
               config: Optional[CircuitBreakerConfig]) -> CircuitBreaker:
        breaker = CircuitBreaker(
            fn,
            name=name,
            config=config or self.default_config,
            clock=self._clock,
            logger=self._logger
        )
        self._breakers[name] = breaker

        self.logger.info(
            "Created new circuit breaker",
            breaker=name,
            total_breakers=len(self._breakers)
        )
        return breaker

    def wrap_client(self,
                    client: Any,
                    methods: Sequence[str],
                    name: Optional[str] = None,
                    config: Optional[CircuitBreakerConfig] = None) -> ProtectedClient:
        """
        Guard each listed method of ``client`` with its own circuit breaker.

        Args:
            client: Object exposing the methods to protect
            methods: Names of the methods to wrap
            name: Prefix for breaker names, defaults to the client's class name.
                A numeric suffix is added when the prefix is already in use, so
                every wrapped client gets breakers of its own.
            config: Configuration shared by the method breakers

        Returns:
            A ProtectedClient exposing the wrapped methods plus every other
            client attribute unchanged

        Raises:
            CircuitBreakerConfigurationError: If a listed name is not a callable attribute
        """
        if isinstance(methods, str) or not methods:
            raise CircuitBreakerConfigurationError(
                "methods must be a non-empty sequence of method names",
                config_field="methods",
                provided_value=methods
            )

        base_prefix = name or type(client).__name__
        shared_config = config or self.default_config
        targets: Dict[str, Callable[..., Any]] = {}

        for method_name in methods:
            target = getattr(client, method_name, None)
            if not callable(target):
                raise CircuitBreakerConfigurationError(
                    f"Client attribute is not a callable method: {method_name}",
                    config_field="methods",
                    provided_value=method_name
                )
            targets[method_name] = target

        prefix = self._unique_prefix(base_prefix, list(targets))
        breakers = {
            method_name: self._build(target, f"{prefix}.{method_name}", shared_config)
            for method_name, target in targets.items()
        }

        self.logger.info("Wrapped client methods with circuit breakers", client=prefix, methods=list(breakers))
        return ProtectedClient(client, breakers)

    def get(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def _unique_prefix(self, prefix: str, method_names: List[str]) -> str:
        candidate = prefix
        suffix = 1
        while any(f"{candidate}.{m}" in self._breakers for m in method_names):
            suffix += 1
            candidate = f"{prefix}-{suffix}"
        return candidate

    def get_all_status(self) -> List[Dict[str, Any]]:
        """Health status of every breaker created by this factory."""
        return [breaker.get_health() for breaker in self._breakers.values()]

    def check_health(self) -> Dict[str, Any]:
        """
        Summarize breaker health.

        Returns:
            Overall health flag, totals and details for unhealthy circuits
        """
        statuses = self.get_all_status()
        unhealthy = [status for status in statuses if not status["healthy"]]

        return {
            "healthy": not unhealthy,
            "total": len(statuses),
            "unhealthy": len(unhealthy),
            "circuits": [
                {"name": s["name"], "healthy": s["healthy"], "state": s["state"]}
                for s in statuses
            ],
            "unhealthy_circuits": [
                {
                    "name": s["name"],
                    "last_error": s["last_error"],
                    "last_failure_time": s["last_failure_time"],
                    "metrics": {
                        "failures": s["metrics"]["failures"],
                        "failure_rate": s["metrics"]["percentiles"]["failure"]
                    }
                }
                for s in unhealthy
            ]
        }

    def reset_all(self) -> int:
        """
        Reset every non-closed breaker to closed state.

        Returns:
            Number of circuit breakers that were reset
        """
        reset_count = 0
        for breaker in self._breakers.values():
            if breaker.state != CircuitBreakerState.CLOSED:
                breaker.reset()
                reset_count += 1

        if reset_count > 0:
            self.logger.warning(
                "Bulk circuit breaker reset completed",
                reset_count=reset_count,
                total_breakers=len(self._breakers)
            )
        return reset_count
