"""
Circuit Breaker module.

This module provides the circuit breaker pattern used to shield calls to an
unreliable external dependency, such as an AI completion API, and to recover
automatically once it is healthy again.

The circuit breaker acts as a safety switch that:
- Counts failures in a rolling window
- Short-circuits calls to a fallback or an error when the threshold is reached (OPEN state)
- Lets a single probe call through after a cooldown (HALF_OPEN state)
- Returns to normal operation when the probe succeeds (CLOSED state)

Key Features:
- One independent breaker per guarded callable
- Failure classification by explicit error code (ignored vs counted)
- Fallbacks and lifecycle listeners
- Health reporting per breaker and per factory

Example Usage:
    from resilience_backbone.circuit_breaker import CircuitBreakerFactory, CircuitBreakerOpenError

    factory = CircuitBreakerFactory()
    ai = factory.wrap_client(client, methods=["create_completion"], name="openai")

    try:
        result = await ai.create_completion(prompt="...")
    except CircuitBreakerOpenError as e:
        logger.warning("AI provider unavailable", retry_after=e.cooldown_remaining)
"""

from .breaker import (
    BreakerEvent,
    BreakerEventInfo,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    wrap,
)
from .classification import categorize_error, error_code_of
from .exceptions import (
    CircuitBreakerConfigurationError,
    CircuitBreakerError,
    CircuitBreakerOpenError,
    ClassifiedError,
)
from .factory import CircuitBreakerFactory, ProtectedClient

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitBreakerConfig",
    "BreakerEvent",
    "BreakerEventInfo",
    "wrap",
    "CircuitBreakerFactory",
    "ProtectedClient",
    "categorize_error",
    "error_code_of",
    "CircuitBreakerError",
    "CircuitBreakerOpenError",
    "CircuitBreakerConfigurationError",
    "ClassifiedError",
]
