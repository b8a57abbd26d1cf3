"""
Application context.

The context is created once at process start-up and owns the event bus, its
dead-letter queue and the circuit breaker factory. Services receive these
from the context instead of reaching for module-level singletons.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from resilience_backbone.ai import DEFAULT_AI_METHODS, protect_ai_client
from resilience_backbone.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerFactory,
    ProtectedClient,
)
from resilience_backbone.circuit_breaker.breaker import Clock
from resilience_backbone.core.config import Settings, get_settings
from resilience_backbone.core.logging import StructuredLogger
from resilience_backbone.events import DeadLetterQueue, EventBus


@dataclass
class ApplicationContext:
    """Process-lifetime services shared by the application."""

    settings: Settings
    event_bus: EventBus
    breaker_factory: CircuitBreakerFactory
    dead_letter_queue: Optional[DeadLetterQueue] = None

    def protect_ai_client(self, client: Any,
                          methods: Sequence[str] = DEFAULT_AI_METHODS,
                          name: str = "ai") -> ProtectedClient:
        """Wrap an AI provider client with breakers from this context's factory."""
        return protect_ai_client(client, self.breaker_factory, methods=methods,
                                 name=name, settings=self.settings)

    def health(self) -> dict:
        """Combined event bus metrics and breaker health."""
        return {
            "event_bus": self.event_bus.get_metrics().to_dict(),
            "circuit_breakers": self.breaker_factory.check_health()
        }


def create_application_context(settings: Optional[Settings] = None,
                               logger: Optional[StructuredLogger] = None,
                               clock: Clock = time.monotonic) -> ApplicationContext:
    """
    Build the event bus and breaker factory from settings.

    Args:
        settings: Application settings, defaults to get_settings()
        logger: Logging collaborator shared by every component
        clock: Time source for circuit breakers
    """
    settings = settings or get_settings()

    dead_letter_queue = None
    if settings.EVENT_BUS_USE_DLQ:
        dead_letter_queue = DeadLetterQueue(max_entries=settings.DLQ_MAX_ENTRIES, logger=logger)

    event_bus = EventBus(
        record_history=settings.EVENT_BUS_RECORD_HISTORY,
        history_limit=settings.EVENT_BUS_HISTORY_LIMIT,
        dead_letter_queue=dead_letter_queue,
        logger=logger
    )
    breaker_factory = CircuitBreakerFactory(
        default_config=CircuitBreakerConfig.from_settings(settings),
        clock=clock,
        logger=logger
    )

    return ApplicationContext(
        settings=settings,
        event_bus=event_bus,
        breaker_factory=breaker_factory,
        dead_letter_queue=dead_letter_queue
    )
