"""
Trace session state machine.

A TraceSession owns one trace's lifecycle and its ordered hop list. It performs
no I/O: every transition returns the TraceEvent to publish (or None when the
transition is a no-op), and the orchestrator decides how to deliver it.
"""

import bisect
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from ..exceptions import ValidationError
from ..models import Hop, HopFact, Location, TraceEvent, TraceEventType, TraceStatus
from .runner import validate_target

logger = logging.getLogger(__name__)


class TraceSession:
    """Server-side state of one client's traceroute.

    Attributes:
        id: Unique session identity, used to reject stale enrichment results
        target: Validated destination (raw input if validation failed)
        status: Current TraceStatus
        started_at: When the session was accepted
        finished_at: When it reached a terminal status
        error: Failure description, if any
    """

    def __init__(self, target: Optional[str]):
        self.id = uuid.uuid4().hex
        self.target = target or ""
        self.status = TraceStatus.IDLE
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.error: Optional[str] = None
        self._hops: List[Hop] = []
        self._hop_numbers: List[int] = []

        try:
            self.target = validate_target(target)
        except ValidationError as e:
            self.status = TraceStatus.FAILED
            self.error = str(e)
            self.finished_at = datetime.utcnow()
            logger.info(f"Rejected trace request for {target!r}: {e}")
        else:
            self.status = TraceStatus.RUNNING
            self.started_at = datetime.utcnow()

    def __repr__(self):
        return (
            f"<TraceSession(id={self.id[:8]}, target='{self.target}', "
            f"status='{self.status.value}')>"
        )

    @property
    def is_running(self) -> bool:
        return self.status == TraceStatus.RUNNING

    @property
    def hops(self) -> List[Hop]:
        """Snapshots of the hops, ascending by hop number."""
        return [hop.snapshot() for hop in self._hops]

    @property
    def hop_count(self) -> int:
        return len(self._hops)

    def get_hop(self, hop_number: int) -> Optional[Hop]:
        index = bisect.bisect_left(self._hop_numbers, hop_number)
        if index < len(self._hop_numbers) and self._hop_numbers[index] == hop_number:
            return self._hops[index]
        return None

    def _event(self, event_type: TraceEventType, hop: Optional[Hop] = None, **data) -> TraceEvent:
        return TraceEvent(
            type=event_type,
            session_id=self.id,
            hop=hop.snapshot() if hop is not None else None,
            data=data,
        )

    def started_event(self) -> TraceEvent:
        """Event announcing an accepted trace (or the rejection of an invalid one)."""
        if self.status == TraceStatus.FAILED:
            return self._event(TraceEventType.ERROR, error=self.error)
        return self._event(TraceEventType.STARTED, target=self.target)

    def record_hop(self, fact: HopFact) -> Optional[TraceEvent]:
        """
        Insert or update the hop reported by ``fact``.

        A new hop number is inserted in ascending position; a known one keeps
        its position and IP while latency and hostname take the new values.

        Returns:
            hop-discovered event, or None once the session is closed
        """
        if not self.is_running:
            return None

        hop = self.get_hop(fact.hop_number)
        if hop is None:
            hop = Hop.from_fact(fact)
            index = bisect.bisect_left(self._hop_numbers, fact.hop_number)
            self._hop_numbers.insert(index, fact.hop_number)
            self._hops.insert(index, hop)
        else:
            if fact.ip and fact.ip != hop.ip:
                logger.debug(
                    f"Hop {hop.hop_number} already recorded as {hop.ip or '*'}, "
                    f"ignoring address {fact.ip}"
                )
            hop.latency_ms = fact.latency_ms
            if fact.ip == hop.ip:
                hop.hostname = fact.hostname

        return self._event(TraceEventType.HOP_DISCOVERED, hop)

    def record_location(
        self, session_id: str, hop_number: int, ip: str, location: Optional[Location]
    ) -> Optional[TraceEvent]:
        """
        Attach an enrichment result to a hop.

        Results are dropped when they belong to another session, arrive after
        the session closed, name an unknown hop or a different IP, are empty,
        or the hop is already located.

        Returns:
            hop-location-updated event, or None if the result was dropped
        """
        if session_id != self.id or not self.is_running or location is None:
            return None

        hop = self.get_hop(hop_number)
        if hop is None or hop.ip != ip or hop.location is not None:
            return None

        hop.location = location
        return self._event(TraceEventType.HOP_LOCATION_UPDATED, hop)

    def record_diagnostic(self, text: str) -> Optional[TraceEvent]:
        """Relay a stderr line; the session stays running."""
        if not self.is_running:
            return None
        return self._event(TraceEventType.DIAGNOSTIC, text=text)

    def complete(self) -> Optional[TraceEvent]:
        """Mark the trace completed and close it for mutation."""
        if not self.is_running:
            return None
        self.status = TraceStatus.COMPLETED
        self.finished_at = datetime.utcnow()
        logger.info(f"Trace {self.id[:8]} to {self.target} completed with {self.hop_count} hop(s)")
        return self._event(TraceEventType.COMPLETED, hopCount=self.hop_count)

    def fail(self, error: str) -> Optional[TraceEvent]:
        """Mark the trace failed; pending enrichment results will be ignored."""
        if not self.is_running:
            return None
        self.status = TraceStatus.FAILED
        self.error = error
        self.finished_at = datetime.utcnow()
        logger.warning(f"Trace {self.id[:8]} to {self.target} failed: {error}")
        return self._event(TraceEventType.ERROR, error=error)

    def cancel(self):
        """Discard the session silently (client went away)."""
        if not self.is_running:
            return
        self.status = TraceStatus.FAILED
        self.error = "client disconnected"
        self.finished_at = datetime.utcnow()
        logger.info(f"Trace {self.id[:8]} to {self.target} cancelled")
