"""
Domain event models.

EventType is the shared catalog of namespaced event identifiers. The bus
compares event types by string value, so plain strings and catalog members
are interchangeable.
"""

import copy
import inspect
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Catalog of domain events published by application services."""

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    CHALLENGE_CREATED = "challenge.created"
    CHALLENGE_SUBMITTED = "challenge.submitted"
    CHALLENGE_COMPLETED = "challenge.completed"
    EVALUATION_COMPLETED = "evaluation.completed"
    FOCUS_AREA_GENERATED = "focus_area.generated"
    PERSONALITY_PROFILE_UPDATED = "personality.profile_updated"
    PROGRESS_UPDATED = "progress.updated"

    def __str__(self) -> str:
        return self.value


EventName = Union[EventType, str]
Handler = Callable[..., Union[Any, Awaitable[Any]]]


def normalize_event_type(event_type: Any) -> Optional[str]:
    """Return the string value of an event type, or None if it is not one."""
    if isinstance(event_type, EventType):
        return event_type.value
    if isinstance(event_type, str) and event_type.strip():
        return event_type
    return None


class EventEnvelope(BaseModel):
    """
    Immutable record of one published event.

    Example:
        envelope = EventEnvelope.create("user.created", {"user_id": "u-1"}, sequence=1)
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., description="Unique event identifier (UUID4 string)")
    type: str = Field(..., description="Namespaced event type, e.g. 'user.created'")
    payload: Any = Field(default=None, description="Opaque, serializable event data")
    timestamp: str = Field(..., description="Publish time in UTC ISO 8601 format")
    sequence: int = Field(..., ge=1, description="Per-bus publish sequence number")
    correlation_id: str = Field(..., description="Correlation ID for tracing, defaults to the event ID")
    source_id: Optional[str] = Field(default=None, description="Identifier of the entity the event is about")

    @classmethod
    def create(cls, event_type: str, payload: Any, sequence: int,
               correlation_id: Optional[str] = None,
               source_id: Optional[str] = None) -> "EventEnvelope":
        """
        Create an envelope with a generated ID and the current UTC timestamp.

        The payload is deep-copied, so later changes by the publisher are not
        seen by handlers or history.
        """
        event_id = str(uuid.uuid4())
        return cls(
            event_id=event_id,
            type=event_type,
            payload=copy.deepcopy(payload),
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            sequence=sequence,
            correlation_id=correlation_id or event_id,
            source_id=source_id
        )


class EventTypeInfo(BaseModel):
    """Documentation metadata for a registered event type."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    category: str = "uncategorized"
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )


@dataclass
class HandlerRegistration:
    """A handler registered for one event type."""

    handler_id: str
    event_type: str
    handler: Handler
    once: bool = False
    accepts_envelope: bool = False

    def invoke(self, envelope: EventEnvelope) -> Any:
        """
        Call the handler with the payload, plus the envelope if it takes two arguments.

        Each invocation gets its own copy of the payload, so a handler that
        mutates it cannot change what later handlers or the history see.
        """
        payload = copy.deepcopy(envelope.payload)
        if self.accepts_envelope:
            return self.handler(payload, envelope.model_copy(update={"payload": payload}))
        return self.handler(payload)


def positional_arity(handler: Handler) -> Optional[int]:
    """
    Count the positional parameters a handler accepts.

    Returns None when the signature cannot be inspected (some builtins) and
    2 for handlers taking ``*args``.
    """
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return None

    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind == inspect.Parameter.VAR_POSITIONAL:
            return 2
        if parameter.kind in (inspect.Parameter.POSITIONAL_ONLY,
                              inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional
