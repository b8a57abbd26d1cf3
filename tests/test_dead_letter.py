"""Tests for the dead-letter queue."""

from unittest.mock import AsyncMock

import pytest

from resilience_backbone.events import DeadLetterQueue, EventEnvelope


def make_envelope(sequence=1, event_type="user.created"):
    return EventEnvelope.create(event_type, {"user_id": "u-1"}, sequence, correlation_id="req-1")


class TestDeadLetterStore:
    """Test storing and querying failed invocations."""

    @pytest.fixture
    def dlq(self, mock_logger):
        return DeadLetterQueue(max_entries=3, logger=mock_logger)

    def test_store_failed_event(self, dlq):
        """Test that a stored entry captures the envelope and error."""
        envelope = make_envelope()

        entry = dlq.store_failed_event(envelope, "welcome-email", ConnectionError("smtp down"))

        assert entry is not None
        assert entry.status == "pending"
        assert entry.retry_count == 0
        assert entry.event_type == "user.created"
        assert entry.correlation_id == "req-1"
        assert entry.error_type == "ConnectionError"
        assert dlq.get_entry(entry.entry_id) is entry

    def test_bounded_queue_evicts_oldest(self, dlq):
        """Test that the oldest entries are dropped beyond max_entries."""
        entries = [
            dlq.store_failed_event(make_envelope(n), "handler", RuntimeError(str(n)))
            for n in range(1, 5)
        ]

        assert len(dlq) == 3
        assert dlq.get_entry(entries[0].entry_id) is None
        assert dlq.get_failed_events() == [entries[3], entries[2], entries[1]]

    def test_max_entries_must_be_positive(self):
        """Test queue capacity validation."""
        with pytest.raises(ValueError):
            DeadLetterQueue(max_entries=0)

    def test_filter_by_status_and_type(self, dlq):
        """Test filtering entries."""
        created = dlq.store_failed_event(make_envelope(1, "user.created"), "h1", RuntimeError("a"))
        deleted = dlq.store_failed_event(make_envelope(2, "user.deleted"), "h2", RuntimeError("b"))
        dlq.resolve_entry(created.entry_id)

        assert dlq.get_failed_events(status="pending") == [deleted]
        assert dlq.get_failed_events(event_type="user.created") == [created]
        assert dlq.get_failed_events(limit=1) == [deleted]

    def test_delete_and_clear(self, dlq):
        """Test removing entries."""
        entry = dlq.store_failed_event(make_envelope(), "h1", RuntimeError("a"))
        dlq.store_failed_event(make_envelope(2), "h1", RuntimeError("b"))

        assert dlq.delete_entry(entry.entry_id) is True
        assert dlq.delete_entry(entry.entry_id) is False
        assert len(dlq) == 1

        dlq.clear()
        assert len(dlq) == 0

    def test_resolve_unknown_entry(self, dlq):
        """Test resolving an id that is not stored."""
        assert dlq.resolve_entry("missing") is False


class TestDeadLetterRetry:
    """Test redelivery of stored entries."""

    @pytest.fixture
    def dlq(self, mock_logger):
        return DeadLetterQueue(logger=mock_logger)

    @pytest.mark.asyncio
    async def test_successful_retry_resolves_entry(self, dlq):
        """Test that a successful redelivery resolves the entry."""
        envelope = make_envelope()
        entry = dlq.store_failed_event(envelope, "welcome-email", RuntimeError("down"))
        redeliverer = AsyncMock()

        assert await dlq.retry_event(entry.entry_id, redeliverer) is True

        redeliverer.redeliver.assert_awaited_once_with(envelope, "welcome-email")
        assert entry.status == "resolved"
        assert entry.retry_count == 1
        assert entry.last_retry_at is not None

    @pytest.mark.asyncio
    async def test_failed_retry_records_new_error(self, dlq):
        """Test that a failing redelivery marks the entry failed."""
        entry = dlq.store_failed_event(make_envelope(), "welcome-email", RuntimeError("down"))
        redeliverer = AsyncMock()
        redeliverer.redeliver.side_effect = TimeoutError("still down")

        assert await dlq.retry_event(entry.entry_id, redeliverer) is False

        assert entry.status == "failed"
        assert entry.error_type == "TimeoutError"
        assert entry.error_message == "still down"
        assert entry.retry_count == 1

    @pytest.mark.asyncio
    async def test_retry_unknown_entry(self, dlq):
        """Test that an unknown id is reported as not retried."""
        redeliverer = AsyncMock()

        assert await dlq.retry_event("missing", redeliverer) is False
        redeliverer.redeliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_events_oldest_first(self, dlq):
        """Test batch retry order and summary counts."""
        first = dlq.store_failed_event(make_envelope(1), "h1", RuntimeError("a"))
        second = dlq.store_failed_event(make_envelope(2), "h2", RuntimeError("b"))
        redeliverer = AsyncMock()
        redeliverer.redeliver.side_effect = [None, RuntimeError("again")]

        summary = await dlq.retry_events(redeliverer, status="pending")

        assert summary.total == 2
        assert summary.successful == 1
        assert summary.failed == 1
        assert [d["entry_id"] for d in summary.details] == [first.entry_id, second.entry_id]
        assert first.status == "resolved"
        assert second.status == "failed"
