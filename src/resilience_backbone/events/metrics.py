"""
Metrics and history store for the event bus.

EventMetrics holds monotonic counters that only clear() resets. EventHistory
is a bounded ring buffer of published envelopes; once full, the oldest
envelope is evicted on every append.
"""

from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Deque, Dict, List, Mapping, Optional

from .models import EventEnvelope


@dataclass(frozen=True)
class MetricsSnapshot:
    """Read-only copy of the bus counters at one point in time."""

    published_events: int
    handler_errors: int
    per_type_counts: Mapping[str, int]
    handler_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    average_processing_ms: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> Dict[str, object]:
        return {
            "published_events": self.published_events,
            "handler_errors": self.handler_errors,
            "per_type_counts": dict(self.per_type_counts),
            "handler_counts": dict(self.handler_counts),
            "average_processing_ms": dict(self.average_processing_ms),
        }


class EventMetrics:
    """Counters for published events, handler failures and handler latency."""

    def __init__(self):
        self.published_events = 0
        self.handler_errors = 0
        self.per_type_counts: Dict[str, int] = {}
        # event_type -> (invocations, total milliseconds)
        self._processing: Dict[str, List[float]] = {}

    def record_publish(self, event_type: str) -> None:
        self.published_events += 1
        self.per_type_counts[event_type] = self.per_type_counts.get(event_type, 0) + 1

    def record_handler_error(self) -> None:
        self.handler_errors += 1

    def record_processing_time(self, event_type: str, duration_ms: float) -> None:
        stats = self._processing.setdefault(event_type, [0, 0.0])
        stats[0] += 1
        stats[1] += duration_ms

    def snapshot(self, handler_counts: Optional[Mapping[str, int]] = None) -> MetricsSnapshot:
        averages = {
            event_type: total / count
            for event_type, (count, total) in self._processing.items()
            if count
        }
        return MetricsSnapshot(
            published_events=self.published_events,
            handler_errors=self.handler_errors,
            per_type_counts=MappingProxyType(dict(self.per_type_counts)),
            handler_counts=MappingProxyType(dict(handler_counts or {})),
            average_processing_ms=MappingProxyType(averages),
        )

    def clear(self) -> None:
        self.published_events = 0
        self.handler_errors = 0
        self.per_type_counts.clear()
        self._processing.clear()


class EventHistory:
    """
    Bounded, oldest-evicted log of published envelopes.

    Example:
        history = EventHistory(capacity=2)
        history.append(first)
        history.append(second)
        history.append(third)   # evicts first
        history.get_events()    # [third, second]
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("History capacity must be >= 1")
        self._events: Deque[EventEnvelope] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._events.maxlen

    def append(self, envelope: EventEnvelope) -> None:
        self._events.append(envelope)

    def get_events(self,
                   event_type: Optional[str] = None,
                   correlation_id: Optional[str] = None,
                   limit: Optional[int] = None) -> List[EventEnvelope]:
        """
        Return envelopes in reverse chronological order (newest first).

        Args:
            event_type: Only envelopes of this type
            correlation_id: Only envelopes carrying this correlation ID
            limit: Maximum number of envelopes to return
        """
        events = [
            envelope for envelope in reversed(self._events)
            if (event_type is None or envelope.type == event_type)
            and (correlation_id is None or envelope.correlation_id == correlation_id)
        ]
        if limit is not None and limit > 0:
            return events[:limit]
        return events

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
