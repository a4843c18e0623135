"""
Session event emitter.

Serializes one session's TraceEvents into ``{"event", "data"}`` messages and
hands them to the transport's sink in strict causal order.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ..models import TraceEvent, TraceEventType
from ..schemas import TraceEventMessage

logger = logging.getLogger(__name__)

EventSink = Callable[[dict[str, Any]], Awaitable[None]]


class SessionEventEmitter:
    """Ordered outward event stream for a single trace session.

    Guarantees, per session:
      - ``traceroute-started`` comes first; only a rejection
        ``traceroute-error`` may replace it
      - a hop's ``hop-discovered`` precedes its ``hop-location-updated``
      - the terminal event is last; anything after it is dropped
    """

    def __init__(self, sink: EventSink):
        self._sink = sink
        self._lock = asyncio.Lock()
        self._session_id: Optional[str] = None
        self._started = False
        self._closed = False
        self._discovered: set[int] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def _accepts(self, event: TraceEvent) -> bool:
        if self._closed:
            return False
        if self._session_id is not None and event.session_id != self._session_id:
            return False
        if not self._started:
            return event.type in (TraceEventType.STARTED, TraceEventType.ERROR)
        if event.type == TraceEventType.STARTED:
            return False
        if event.type == TraceEventType.HOP_LOCATION_UPDATED:
            return event.hop is not None and event.hop.hop_number in self._discovered
        return True

    async def emit(self, event: Optional[TraceEvent]) -> bool:
        """
        Send one event if it respects the ordering rules.

        Args:
            event: Event returned by a TraceSession transition (None is ignored)

        Returns:
            True if the event was handed to the sink

        Raises:
            Whatever the sink raises (e.g. the client disconnected)
        """
        if event is None:
            return False

        async with self._lock:
            if not self._accepts(event):
                logger.warning(
                    f"Dropping out-of-order {event.type.value} event "
                    f"for session {event.session_id[:8]}"
                )
                return False

            message = TraceEventMessage.from_event(event).model_dump(mode="json")
            await self._sink(message)

            self._session_id = event.session_id
            self._started = True
            if event.type == TraceEventType.HOP_DISCOVERED and event.hop is not None:
                self._discovered.add(event.hop.hop_number)
            if event.type.is_terminal:
                self._closed = True
            return True
