"""
Domain event bus.

The bus is an explicitly constructed service owned by the application
context; there is no module-level instance. Handlers for an event type are
invoked in registration order and awaited one at a time, so a single publish
has a deterministic order and every failure is attributable to one handler.

Handler failures are isolated: they are logged, counted, optionally stored in
the dead-letter queue, and never stop the remaining handlers or reach the
publisher.

Example Usage:
    bus = EventBus(history_limit=1000)

    async def send_welcome_email(payload, envelope):
        ...

    bus.register(EventType.USER_CREATED, send_welcome_email)
    await bus.publish(EventType.USER_CREATED, {"user_id": "u-1"})
"""

import inspect
import time
from typing import Any, Dict, List, Optional

from pydantic_core import PydanticSerializationError, to_jsonable_python

from resilience_backbone.core.logging import StructuredLogger, get_logger

from .dead_letter import DeadLetterEntry, DeadLetterQueue, RetrySummary
from .exceptions import (
    DuplicateHandlerError,
    EventBusError,
    HandlerExecutionError,
    InvalidEventError,
    InvalidHandlerError,
)
from .metrics import EventHistory, EventMetrics, MetricsSnapshot
from .models import (
    EventEnvelope,
    EventName,
    EventTypeInfo,
    Handler,
    HandlerRegistration,
    normalize_event_type,
    positional_arity,
)


class EventBus:
    """
    Synchronous, fault-isolated publish/subscribe bus for domain events.

    Key Features:
    - Ordered handler lists per event type with id-based unregistration
    - Sequential awaiting of sync and async handlers
    - Bounded, oldest-evicted event history
    - Published-event, per-type, handler-error and latency metrics
    - Optional dead-letter queue with targeted redelivery
    """

    def __init__(self,
                 record_history: bool = True,
                 history_limit: int = 1000,
                 dead_letter_queue: Optional[DeadLetterQueue] = None,
                 logger: Optional[StructuredLogger] = None):
        """
        Initialize the event bus.

        Args:
            record_history: Whether published envelopes are kept in history
            history_limit: Capacity of the history ring buffer
            dead_letter_queue: Store for failed handler invocations, if any
            logger: Logging collaborator, defaults to a structlog logger
        """
        self.logger = logger or get_logger(__name__, component="event-bus")
        self.record_history = record_history
        self.dead_letter_queue = dead_letter_queue

        self._handlers: Dict[str, List[HandlerRegistration]] = {}
        self._registrations: Dict[str, HandlerRegistration] = {}
        self._event_types: Dict[str, EventTypeInfo] = {}
        self._history = EventHistory(history_limit)
        self._metrics = EventMetrics()
        self._sequence = 0
        self._handler_counter = 0

    # Registration

    def register(self, event_type: EventName, handler: Handler,
                 handler_id: Optional[str] = None, once: bool = False) -> str:
        """
        Register a handler for an event type.

        The handler is called with ``(payload)`` or ``(payload, envelope)``
        depending on how many positional arguments it accepts, and may return
        an awaitable.

        Returns:
            The registration id, used to unregister the handler

        Raises:
            InvalidEventError: If event_type is not a non-empty string
            InvalidHandlerError: If handler is not a callable taking one or two arguments
            DuplicateHandlerError: If handler_id is already registered
        """
        name = self._require_event_type(event_type)

        if not callable(handler):
            raise InvalidHandlerError("Event handler must be callable", name)

        arity = positional_arity(handler)
        if arity == 0:
            raise InvalidHandlerError(
                "Event handler must accept (payload) or (payload, envelope)", name
            )

        if handler_id is not None:
            if not isinstance(handler_id, str) or not handler_id.strip():
                raise InvalidHandlerError("handler_id must be a non-empty string", name)
            if handler_id in self._registrations:
                raise DuplicateHandlerError(handler_id, name)
        else:
            handler_id = self._next_handler_id(name)

        registration = HandlerRegistration(
            handler_id=handler_id,
            event_type=name,
            handler=handler,
            once=once,
            accepts_envelope=arity is not None and arity >= 2
        )
        self._handlers.setdefault(name, []).append(registration)
        self._registrations[handler_id] = registration

        self.logger.debug("Registered handler for event", event_type=name, handler_id=handler_id, once=once)
        return handler_id

    def once(self, event_type: EventName, handler: Handler,
             handler_id: Optional[str] = None) -> str:
        """Register a handler that is removed before its first invocation."""
        return self.register(event_type, handler, handler_id=handler_id, once=True)

    def unregister(self, handler_id: str) -> bool:
        """
        Remove a registration by id.

        Returns:
            True if a registration was removed, False if the id was unknown
        """
        registration = self._registrations.pop(handler_id, None)
        if registration is None:
            return False

        handlers = self._handlers.get(registration.event_type, [])
        handlers[:] = [r for r in handlers if r.handler_id != handler_id]
        if not handlers:
            self._handlers.pop(registration.event_type, None)

        self.logger.debug("Removed handler for event", event_type=registration.event_type, handler_id=handler_id)
        return True

    def unregister_all(self, event_type: EventName) -> int:
        """Remove every handler for an event type and return how many were removed."""
        name = self._require_event_type(event_type)
        handlers = self._handlers.pop(name, [])
        for registration in handlers:
            self._registrations.pop(registration.handler_id, None)

        self.logger.debug("Removed all handlers for event", event_type=name, removed=len(handlers))
        return len(handlers)

    def get_handler_ids(self, event_type: EventName) -> List[str]:
        """Registration ids for an event type, in invocation order."""
        name = self._require_event_type(event_type)
        return [r.handler_id for r in self._handlers.get(name, [])]

    def register_event_type(self, event_type: EventName, description: str = "",
                            category: str = "uncategorized") -> EventTypeInfo:
        """Record documentation metadata for an event type."""
        name = self._require_event_type(event_type)
        info = EventTypeInfo(name=name, description=description, category=category)
        self._event_types[name] = info
        self.logger.debug("Event type registered", event_type=name, category=category)
        return info

    def get_event_types(self) -> Dict[str, EventTypeInfo]:
        return dict(self._event_types)

    # Publishing

    async def publish(self, event_type: EventName, payload: Any = None,
                      correlation_id: Optional[str] = None,
                      source_id: Optional[str] = None) -> EventEnvelope:
        """
        Publish an event to every handler registered for its type.

        Handlers registered at the moment of publishing are invoked in
        registration order and awaited one after another. A handler that
        raises is logged and counted; the remaining handlers still run.

        Args:
            event_type: Namespaced event type
            payload: Serializable event data
            correlation_id: Correlation ID for tracing, defaults to the event ID
            source_id: Identifier of the entity the event is about

        Returns:
            The envelope that was dispatched

        Raises:
            InvalidEventError: If event_type or payload is malformed. Nothing
                is recorded or dispatched in that case.
        """
        name = self._require_event_type(event_type)
        self._require_serializable(name, payload)

        self._sequence += 1
        envelope = EventEnvelope.create(name, payload, self._sequence, correlation_id, source_id)

        if self.record_history:
            self._history.append(envelope)
        self._metrics.record_publish(name)

        registrations = list(self._handlers.get(name, []))
        self.logger.info(
            "Publishing event",
            event_type=name,
            event_id=envelope.event_id,
            sequence=envelope.sequence,
            correlation_id=envelope.correlation_id,
            source_id=source_id,
            handler_count=len(registrations)
        )

        for registration in registrations:
            # Skip handlers removed by an earlier handler during this publish
            if self._registrations.get(registration.handler_id) is not registration:
                continue
            if registration.once:
                self.unregister(registration.handler_id)
            await self._dispatch(envelope, registration)

        return envelope

    async def _dispatch(self, envelope: EventEnvelope, registration: HandlerRegistration) -> None:
        start_time = time.perf_counter()
        try:
            self.logger.debug(
                "Executing event handler",
                event_type=envelope.type,
                handler_id=registration.handler_id
            )
            result = registration.invoke(envelope)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self._metrics.record_handler_error()

            failure = HandlerExecutionError(envelope.type, registration.handler_id, e, duration_ms)
            self.logger.error(
                "Error in event handler",
                event_id=envelope.event_id,
                exc_info=True,
                **failure.to_dict()
            )

            if self.dead_letter_queue is not None:
                self.dead_letter_queue.store_failed_event(envelope, registration.handler_id, e)
            return

        duration_ms = (time.perf_counter() - start_time) * 1000
        self._metrics.record_processing_time(envelope.type, duration_ms)
        self.logger.debug(
            "Handler completed",
            event_type=envelope.type,
            handler_id=registration.handler_id,
            duration_ms=duration_ms
        )

    async def redeliver(self, envelope: EventEnvelope, handler_id: str) -> None:
        """
        Hand an already published envelope to one handler again.

        Used by the dead-letter queue. Unlike publish, the handler's exception
        propagates to the caller and nothing is recorded in metrics or history.

        Raises:
            EventBusError: If the handler is no longer registered
        """
        registration = self._registrations.get(handler_id)
        if registration is None:
            raise EventBusError(f"Handler no longer registered: {handler_id}", envelope.type)

        result = registration.invoke(envelope)
        if inspect.isawaitable(result):
            await result

    # Dead-letter queue

    def get_failed_events(self, status: Optional[str] = None,
                          event_type: Optional[EventName] = None,
                          limit: Optional[int] = None) -> List[DeadLetterEntry]:
        if self.dead_letter_queue is None:
            self.logger.warning("Dead-letter queue is not enabled, cannot get failed events")
            return []
        name = normalize_event_type(event_type) if event_type is not None else None
        return self.dead_letter_queue.get_failed_events(status=status, event_type=name, limit=limit)

    async def retry_dead_letter(self, entry_id: str) -> bool:
        if self.dead_letter_queue is None:
            self.logger.warning("Dead-letter queue is not enabled, cannot retry event")
            return False
        return await self.dead_letter_queue.retry_event(entry_id, self)

    async def retry_dead_letters(self, status: Optional[str] = "pending",
                                 event_type: Optional[EventName] = None) -> RetrySummary:
        if self.dead_letter_queue is None:
            self.logger.warning("Dead-letter queue is not enabled, cannot retry events")
            return RetrySummary()
        name = normalize_event_type(event_type) if event_type is not None else None
        return await self.dead_letter_queue.retry_events(self, status=status, event_type=name)

    # Observability

    def get_metrics(self) -> MetricsSnapshot:
        """Return a read-only snapshot of the bus counters."""
        handler_counts = {name: len(handlers) for name, handlers in self._handlers.items()}
        return self._metrics.snapshot(handler_counts)

    def get_history(self, event_type: Optional[EventName] = None,
                    correlation_id: Optional[str] = None,
                    limit: Optional[int] = None) -> List[EventEnvelope]:
        """Return recorded envelopes newest first, optionally filtered."""
        if not self.record_history:
            return []
        name = normalize_event_type(event_type) if event_type is not None else None
        return self._history.get_events(event_type=name, correlation_id=correlation_id, limit=limit)

    def clear(self) -> None:
        """
        Reset handlers, history, metrics and event type metadata.

        Intended for test isolation only.
        """
        self._handlers.clear()
        self._registrations.clear()
        self._event_types.clear()
        self._history.clear()
        self._metrics.clear()
        self._sequence = 0
        self._handler_counter = 0
        self.logger.debug("Event bus cleared")

    # Helpers

    def _require_event_type(self, event_type: Any) -> str:
        name = normalize_event_type(event_type)
        if name is None:
            raise InvalidEventError(
                "Event type must be a non-empty string",
                context={"provided_value": repr(event_type)}
            )
        return name

    def _require_serializable(self, event_type: str, payload: Any) -> None:
        try:
            to_jsonable_python(payload)
        except (PydanticSerializationError, ValueError) as e:
            # ValueError covers circular references
            raise InvalidEventError(
                f"Event payload is not serializable: {e}",
                event_type,
                context={"payload_type": type(payload).__name__}
            ) from e

    def _next_handler_id(self, event_type: str) -> str:
        while True:
            self._handler_counter += 1
            handler_id = f"{event_type}-handler-{self._handler_counter}"
            if handler_id not in self._registrations:
                return handler_id
