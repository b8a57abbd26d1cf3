"""
Domain event module.

Provides the publish/subscribe bus that application services use to announce
state changes, together with its event catalog, metrics/history store and
dead-letter queue.
"""

from .bus import EventBus
from .dead_letter import DeadLetterEntry, DeadLetterQueue, RetrySummary
from .exceptions import (
    DuplicateHandlerError,
    EventBusError,
    HandlerExecutionError,
    InvalidEventError,
    InvalidHandlerError,
)
from .metrics import EventHistory, EventMetrics, MetricsSnapshot
from .models import EventEnvelope, EventType, EventTypeInfo, HandlerRegistration

__all__ = [
    "EventBus",
    "EventType",
    "EventEnvelope",
    "EventTypeInfo",
    "HandlerRegistration",
    "EventHistory",
    "EventMetrics",
    "MetricsSnapshot",
    "DeadLetterQueue",
    "DeadLetterEntry",
    "RetrySummary",
    "EventBusError",
    "InvalidEventError",
    "InvalidHandlerError",
    "DuplicateHandlerError",
    "HandlerExecutionError",
]
