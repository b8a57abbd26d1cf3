"""
In-memory dead-letter queue for failed event handler invocations.

Every handler failure caught by the bus can be stored here together with the
envelope that triggered it, so operators can inspect failures and redeliver
the event to the handler that failed. The queue is bounded; the oldest
entries are evicted first.
"""

import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from resilience_backbone.core.logging import StructuredLogger, get_logger

from .models import EventEnvelope

DLQ_STATUSES = ("pending", "retrying", "resolved", "failed")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Redeliverer(Protocol):
    """Something that can hand an envelope to one registered handler again."""

    async def redeliver(self, envelope: EventEnvelope, handler_id: str) -> None: ...


class DeadLetterEntry(BaseModel):
    """A failed handler invocation kept for inspection and retry."""

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    envelope: EventEnvelope
    handler_id: str
    error_message: str
    error_type: str
    retry_count: int = Field(default=0, ge=0)
    status: str = Field(default="pending", pattern="^(pending|retrying|resolved|failed)$")
    created_at: str = Field(default_factory=_utc_now)
    last_retry_at: Optional[str] = None

    @property
    def event_type(self) -> str:
        return self.envelope.type

    @property
    def correlation_id(self) -> Optional[str]:
        return self.envelope.correlation_id


class RetrySummary(BaseModel):
    """Outcome of retrying a batch of dead-letter entries."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    details: List[Dict[str, Any]] = Field(default_factory=list)


class DeadLetterQueue:
    """
    Bounded in-memory store of failed handler invocations.

    Example:
        dlq = DeadLetterQueue(max_entries=100)
        bus = EventBus(dead_letter_queue=dlq)

        # later, after a handler failed
        for entry in dlq.get_failed_events(status="pending"):
            await dlq.retry_event(entry.entry_id, bus)
    """

    def __init__(self, max_entries: int = 500, logger: Optional[StructuredLogger] = None):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.logger = logger or get_logger(__name__, component="dead-letter-queue")
        self._entries: "OrderedDict[str, DeadLetterEntry]" = OrderedDict()

    def store_failed_event(self, envelope: EventEnvelope, handler_id: str,
                           error: BaseException) -> Optional[DeadLetterEntry]:
        """
        Store a failed handler invocation.

        Returns the stored entry, or None if it could not be stored. Never
        raises, since it runs inside the bus's error path.
        """
        try:
            entry = DeadLetterEntry(
                envelope=envelope,
                handler_id=handler_id,
                error_message=str(error),
                error_type=type(error).__name__
            )
        except Exception as store_error:
            self.logger.error(
                "Failed to store event in dead-letter queue",
                event_id=envelope.event_id,
                handler_id=handler_id,
                error=str(store_error)
            )
            return None

        self._entries[entry.entry_id] = entry
        while len(self._entries) > self.max_entries:
            evicted_id, _ = self._entries.popitem(last=False)
            self.logger.debug("Evicted oldest dead-letter entry", entry_id=evicted_id)

        self.logger.info(
            "Event sent to dead-letter queue",
            entry_id=entry.entry_id,
            event_type=envelope.type,
            event_id=envelope.event_id,
            handler_id=handler_id
        )
        return entry

    def get_entry(self, entry_id: str) -> Optional[DeadLetterEntry]:
        return self._entries.get(entry_id)

    def get_failed_events(self,
                          status: Optional[str] = None,
                          event_type: Optional[str] = None,
                          limit: Optional[int] = None) -> List[DeadLetterEntry]:
        """Return entries newest first, optionally filtered by status and event type."""
        entries = [
            entry for entry in reversed(self._entries.values())
            if (status is None or entry.status == status)
            and (event_type is None or entry.event_type == event_type)
        ]
        if limit is not None and limit > 0:
            return entries[:limit]
        return entries

    async def retry_event(self, entry_id: str, redeliverer: Redeliverer) -> bool:
        """
        Redeliver a failed event to the handler that failed on it.

        Returns:
            True if the handler completed, False if the entry is unknown or
            the handler failed again
        """
        entry = self._entries.get(entry_id)
        if entry is None:
            self.logger.error("Dead-letter entry not found for retry", entry_id=entry_id)
            return False

        entry.retry_count += 1
        entry.last_retry_at = _utc_now()
        entry.status = "retrying"

        self.logger.info(
            "Retrying failed event",
            entry_id=entry_id,
            event_type=entry.event_type,
            event_id=entry.envelope.event_id,
            handler_id=entry.handler_id,
            retry_count=entry.retry_count
        )

        try:
            await redeliverer.redeliver(entry.envelope, entry.handler_id)
        except Exception as retry_error:
            entry.status = "failed"
            entry.error_message = str(retry_error)
            entry.error_type = type(retry_error).__name__
            self.logger.error(
                "Retry failed for event",
                entry_id=entry_id,
                event_type=entry.event_type,
                handler_id=entry.handler_id,
                error=str(retry_error)
            )
            return False

        entry.status = "resolved"
        return True

    async def retry_events(self, redeliverer: Redeliverer,
                           status: Optional[str] = None,
                           event_type: Optional[str] = None) -> RetrySummary:
        """Retry every entry matching the filters, oldest first."""
        entries = list(reversed(self.get_failed_events(status=status, event_type=event_type)))
        summary = RetrySummary(total=len(entries))

        for entry in entries:
            success = await self.retry_event(entry.entry_id, redeliverer)
            summary.details.append({
                "entry_id": entry.entry_id,
                "event_type": entry.event_type,
                "handler_id": entry.handler_id,
                "success": success
            })
            if success:
                summary.successful += 1
            else:
                summary.failed += 1

        return summary

    def resolve_entry(self, entry_id: str) -> bool:
        entry = self._entries.get(entry_id)
        if entry is None:
            return False
        entry.status = "resolved"
        self.logger.info("Resolved dead-letter entry", entry_id=entry_id)
        return True

    def delete_entry(self, entry_id: str) -> bool:
        if self._entries.pop(entry_id, None) is None:
            return False
        self.logger.info("Deleted dead-letter entry", entry_id=entry_id)
        return True

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
