"""
Unit tests for the trace session state machine.

Tests hop ordering and updates, location guards, terminal transitions and
the events each transition returns.
"""
import random
import pytest

from geotrace.models import HopFact, Location, TraceEventType, TraceStatus
from geotrace.tracer.session import TraceSession


MOUNTAIN_VIEW = Location(lat=37.4, lng=-122.1, city="Mountain View", country="USA")


@pytest.fixture
def session():
    """Create a running session."""
    return TraceSession("8.8.8.8")


class TestSessionCreation:
    """Tests for session start and rejection."""

    def test_valid_target_runs(self, session):
        """Test that a valid target starts a running session."""
        assert session.status == TraceStatus.RUNNING
        assert session.started_at is not None

        event = session.started_event()
        assert event.type == TraceEventType.STARTED
        assert event.data == {"target": "8.8.8.8"}
        assert event.session_id == session.id

    def test_invalid_target_fails_immediately(self):
        """Test that a rejected target yields a single error event."""
        session = TraceSession("; rm -rf /")

        assert session.status == TraceStatus.FAILED
        assert session.started_event().type == TraceEventType.ERROR
        assert session.record_hop(HopFact(1, "8.8.8.8", "8.8.8.8", 1)) is None

    def test_missing_target(self):
        """Test the message for an empty request."""
        session = TraceSession(None)

        assert session.error == "target required"
        assert session.started_event().data == {"error": "target required"}

    def test_sessions_have_distinct_ids(self):
        """Test that each request gets its own identity."""
        assert TraceSession("8.8.8.8").id != TraceSession("8.8.8.8").id


class TestRecordHop:
    """Tests for hop insertion and update."""

    def test_out_of_order_insertion(self, session):
        """Test that hops are kept ascending regardless of arrival order."""
        for number, ip in [(3, "3.3.3.3"), (1, "1.1.1.1"), (2, "2.2.2.2")]:
            session.record_hop(HopFact(number, ip, ip, number))

        assert [hop.hop_number for hop in session.hops] == [1, 2, 3]

    def test_duplicate_hop_updates_in_place(self, session):
        """Test that a repeated hop number updates latency and keeps one entry."""
        session.record_hop(HopFact(2, "8.8.8.8", "8.8.8.8", 25))
        event = session.record_hop(HopFact(2, "8.8.8.8", "dns.google", 30))

        assert session.hop_count == 1
        hop = session.hops[0]
        assert hop.latency_ms == 30
        assert hop.hostname == "dns.google"
        assert event.type == TraceEventType.HOP_DISCOVERED
        assert event.hop.latency_ms == 30

    def test_hop_ip_never_changes(self, session):
        """Test that a later line with another address keeps the first IP."""
        session.record_hop(HopFact(2, "8.8.8.8", "dns.google", 25))
        session.record_hop(HopFact(2, "8.8.4.4", "other", 40))

        hop = session.get_hop(2)
        assert hop.ip == "8.8.8.8"
        assert hop.hostname == "dns.google"
        assert hop.latency_ms == 40

    def test_event_carries_snapshot(self, session):
        """Test that emitted hops are detached from session state."""
        event = session.record_hop(HopFact(2, "8.8.8.8", "8.8.8.8", 25))
        session.record_hop(HopFact(2, "8.8.8.8", "8.8.8.8", 99))

        assert event.hop.latency_ms == 25

    def test_random_arrival_order(self, session):
        """Test ordering and uniqueness over many shuffled updates."""
        rng = random.Random(1234)
        numbers = [rng.randint(1, 30) for _ in range(200)]
        for number in numbers:
            session.record_hop(HopFact(number, f"8.8.8.{number}", "x", rng.randint(0, 500)))

        hop_numbers = [hop.hop_number for hop in session.hops]
        assert hop_numbers == sorted(set(numbers))


class TestRecordLocation:
    """Tests for enrichment result application."""

    def test_location_applied_once(self, session):
        """Test that the first matching result is applied and later ones dropped."""
        session.record_hop(HopFact(2, "8.8.8.8", "8.8.8.8", 25))

        event = session.record_location(session.id, 2, "8.8.8.8", MOUNTAIN_VIEW)
        assert event.type == TraceEventType.HOP_LOCATION_UPDATED
        assert event.hop.location == MOUNTAIN_VIEW

        other = Location(lat=0.0, lng=0.0, city="", country="")
        assert session.record_location(session.id, 2, "8.8.8.8", other) is None
        assert session.get_hop(2).location == MOUNTAIN_VIEW

    def test_stale_session_rejected(self, session):
        """Test that results tagged with another session are ignored."""
        session.record_hop(HopFact(2, "8.8.8.8", "8.8.8.8", 25))

        assert session.record_location("someone-else", 2, "8.8.8.8", MOUNTAIN_VIEW) is None
        assert session.get_hop(2).location is None

    def test_mismatched_hop_rejected(self, session):
        """Test unknown hop numbers, different IPs and empty results."""
        session.record_hop(HopFact(2, "8.8.8.8", "8.8.8.8", 25))

        assert session.record_location(session.id, 5, "8.8.8.8", MOUNTAIN_VIEW) is None
        assert session.record_location(session.id, 2, "1.1.1.1", MOUNTAIN_VIEW) is None
        assert session.record_location(session.id, 2, "8.8.8.8", None) is None

    @pytest.mark.parametrize("finish", ["complete", "fail"])
    def test_no_location_after_terminal(self, session, finish):
        """Test that results arriving after the session ended are discarded."""
        session.record_hop(HopFact(2, "8.8.8.8", "8.8.8.8", 25))
        if finish == "complete":
            session.complete()
        else:
            session.fail("boom")

        assert session.record_location(session.id, 2, "8.8.8.8", MOUNTAIN_VIEW) is None
        assert session.hops[0].location is None


class TestTerminalTransitions:
    """Tests for completion, failure and cancellation."""

    def test_complete(self, session):
        """Test that completion reports the hop count once."""
        session.record_hop(HopFact(2, "8.8.8.8", "8.8.8.8", 25))
        session.record_hop(HopFact(3, "1.1.1.1", "1.1.1.1", 10))

        event = session.complete()

        assert event.type == TraceEventType.COMPLETED
        assert event.data == {"hopCount": 2}
        assert session.status == TraceStatus.COMPLETED
        assert session.finished_at is not None
        assert session.complete() is None
        assert session.fail("late") is None

    def test_fail(self, session):
        """Test that failure carries the error and closes the session."""
        event = session.fail("traceroute exited with status 1")

        assert event.data == {"error": "traceroute exited with status 1"}
        assert session.status == TraceStatus.FAILED
        assert session.record_hop(HopFact(1, "8.8.8.8", "8.8.8.8", 1)) is None
        assert session.record_diagnostic("late") is None

    def test_cancel_is_silent(self, session):
        """Test that cancellation closes the session without an event."""
        assert session.cancel() is None
        assert session.status == TraceStatus.FAILED
        assert session.error == "client disconnected"
        assert session.complete() is None

    def test_diagnostic_keeps_running(self, session):
        """Test that stderr text does not end the trace."""
        event = session.record_diagnostic("icmp checksum is wrong")

        assert event.type == TraceEventType.DIAGNOSTIC
        assert event.data == {"text": "icmp checksum is wrong"}
        assert session.is_running
