"""Tests for event metrics counters and the bounded history buffer."""

import pytest

from resilience_backbone.events import EventEnvelope, EventHistory, EventMetrics


def make_envelope(sequence, event_type="user.created", correlation_id=None):
    return EventEnvelope.create(event_type, {"n": sequence}, sequence, correlation_id)


class TestEventHistory:
    """Test the ring buffer of published envelopes."""

    def test_capacity_must_be_positive(self):
        """Test that an empty buffer cannot be configured."""
        with pytest.raises(ValueError):
            EventHistory(capacity=0)

    def test_evicts_oldest_when_full(self):
        """Test that appends beyond capacity drop the oldest envelope."""
        history = EventHistory(capacity=2)
        first, second, third = make_envelope(1), make_envelope(2), make_envelope(3)

        for envelope in (first, second, third):
            history.append(envelope)

        assert len(history) == 2
        assert history.capacity == 2
        assert history.get_events() == [third, second]

    def test_filters_and_limit(self):
        """Test event type, correlation id and limit filters together."""
        history = EventHistory()
        history.append(make_envelope(1, "user.created", "req-1"))
        match_old = make_envelope(2, "user.updated", "req-2")
        history.append(match_old)
        match_new = make_envelope(3, "user.updated", "req-2")
        history.append(match_new)

        assert history.get_events(event_type="user.updated", correlation_id="req-2") == [match_new, match_old]
        assert history.get_events(event_type="user.updated", limit=1) == [match_new]
        assert history.get_events(correlation_id="missing") == []

    def test_clear(self):
        """Test that clear empties the buffer."""
        history = EventHistory()
        history.append(make_envelope(1))

        history.clear()

        assert len(history) == 0


class TestEventMetrics:
    """Test counters and snapshots."""

    def test_record_and_snapshot(self):
        """Test counters are reflected in a snapshot."""
        metrics = EventMetrics()
        metrics.record_publish("user.created")
        metrics.record_publish("user.created")
        metrics.record_publish("user.deleted")
        metrics.record_handler_error()
        metrics.record_processing_time("user.created", 2.0)
        metrics.record_processing_time("user.created", 4.0)

        snapshot = metrics.snapshot({"user.created": 1})

        assert snapshot.published_events == 3
        assert snapshot.handler_errors == 1
        assert snapshot.per_type_counts == {"user.created": 2, "user.deleted": 1}
        assert snapshot.handler_counts == {"user.created": 1}
        assert snapshot.average_processing_ms == {"user.created": 3.0}

    def test_snapshot_is_detached(self):
        """Test that later updates do not leak into an earlier snapshot."""
        metrics = EventMetrics()
        metrics.record_publish("user.created")
        snapshot = metrics.snapshot()

        metrics.record_publish("user.created")

        assert snapshot.per_type_counts["user.created"] == 1
        with pytest.raises(TypeError):
            snapshot.per_type_counts["user.created"] = 7

    def test_snapshot_to_dict(self):
        """Test plain-dict export for logging."""
        metrics = EventMetrics()
        metrics.record_publish("progress.updated")

        data = metrics.snapshot().to_dict()

        assert data == {
            "published_events": 1,
            "handler_errors": 0,
            "per_type_counts": {"progress.updated": 1},
            "handler_counts": {},
            "average_processing_ms": {}
        }

    def test_clear(self):
        """Test that clear resets every counter."""
        metrics = EventMetrics()
        metrics.record_publish("user.created")
        metrics.record_handler_error()
        metrics.record_processing_time("user.created", 1.0)

        metrics.clear()
        snapshot = metrics.snapshot()

        assert snapshot.published_events == 0
        assert snapshot.handler_errors == 0
        assert dict(snapshot.per_type_counts) == {}
        assert dict(snapshot.average_processing_ms) == {}
