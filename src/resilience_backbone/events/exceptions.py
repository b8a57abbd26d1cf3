"""
Event bus exceptions.

Only contract violations detected before dispatch (bad event type, bad
payload, bad handler) are ever raised to callers. Handler failures are wrapped
in HandlerExecutionError for logging and dead-lettering, never raised from
publish.
"""

from typing import Any, Dict, Optional


class EventBusError(Exception):
    """Base exception for event bus errors."""

    def __init__(self, message: str, event_type: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.event_type = event_type
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "event_type": self.event_type,
            "context": self.context
        }


class InvalidEventError(EventBusError):
    """Raised when an event type or payload violates the publish contract."""


class InvalidHandlerError(EventBusError):
    """Raised when a handler registration is malformed."""


class DuplicateHandlerError(EventBusError):
    """Raised when a caller-supplied handler id is already registered."""

    def __init__(self, handler_id: str, event_type: Optional[str] = None):
        super().__init__(f"Handler id already registered: {handler_id}", event_type)
        self.handler_id = handler_id


class HandlerExecutionError(EventBusError):
    """
    A handler raised while processing an event.

    Created by the bus for logging and the dead-letter queue; the original
    exception is kept on ``original_exception``.
    """

    def __init__(self, event_type: str, handler_id: str, original_exception: BaseException,
                 duration_ms: Optional[float] = None):
        super().__init__(
            f"Handler {handler_id} failed for {event_type}: {original_exception}",
            event_type
        )
        self.handler_id = handler_id
        self.original_exception = original_exception
        self.duration_ms = duration_ms

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "handler_id": self.handler_id,
            "original_error": str(self.original_exception),
            "original_error_type": type(self.original_exception).__name__,
            "duration_ms": self.duration_ms
        })
        return base_dict
