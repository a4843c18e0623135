"""
Trace orchestrator.
Coordinates process execution, parsing, session state and geolocation.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Awaitable, Optional

from ..config import settings
from ..exceptions import TraceError, ValidationError
from ..models import Diagnostic, HopFact, Location, RunnerExit
from .emitter import SessionEventEmitter
from .geolocation import GeoLocator
from .runner import RunnerEvent, TracerouteRunner
from .session import TraceSession

logger = logging.getLogger(__name__)


class LookupCache:
    """Session-scoped memo sharing one lookup task per IP.

    When disabled every call is an independent lookup.
    """

    def __init__(self, locator: GeoLocator, enabled: bool = True):
        self.locator = locator
        self.enabled = enabled
        self._tasks: dict[str, asyncio.Task] = {}

    def lookup(self, ip: str) -> Awaitable[Optional[Location]]:
        if not self.enabled:
            return self.locator.lookup(ip)
        task = self._tasks.get(ip)
        if task is None:
            task = asyncio.ensure_future(self.locator.lookup(ip))
            self._tasks[ip] = task
        # Shield so one waiter timing out does not cancel the shared lookup
        return asyncio.shield(task)

    def cancel(self):
        for task in self._tasks.values():
            task.cancel()


async def _discard(message: dict[str, Any]):
    pass


class TraceOrchestrator:
    """Orchestrate complete trace workflow."""

    def __init__(
        self,
        runner: Optional[TracerouteRunner] = None,
        locator: Optional[GeoLocator] = None,
        memoize: Optional[bool] = None,
        enrich_timeout: Optional[float] = None,
    ):
        self.runner = runner or TracerouteRunner()
        self.locator = locator or GeoLocator()
        self.memoize = settings.geo_memoize if memoize is None else memoize
        self.enrich_timeout = enrich_timeout if enrich_timeout is not None else settings.geo_timeout

    async def execute_trace(self, target: str) -> TraceSession:
        """
        Run a one-shot trace: batch mode, every hop enriched before returning.

        Args:
            target: Destination host name or IP

        Returns:
            Completed TraceSession

        Raises:
            ValidationError: If the target is rejected
            ProcessSpawnError: If traceroute cannot be started
            ProcessAbnormalExit: On non-zero exit or timeout (no partial hops)
        """
        session = TraceSession(target)
        if not session.is_running:
            raise ValidationError(session.error)

        await self.run_session(session, SessionEventEmitter(_discard), batch=True, reraise=True)
        return session

    async def run_session(
        self,
        session: TraceSession,
        emitter: SessionEventEmitter,
        batch: bool = False,
        reraise: bool = False,
    ) -> TraceSession:
        """
        Drive one session from start to its terminal event.

        Hop facts are applied in output order and each new hop address gets an
        independent enrichment task. Enrichment results come back through a
        queue consumed by a separate task, so hop delivery never waits on a
        lookup. On success the outstanding lookups are awaited (each bounded by
        ``enrich_timeout``) before ``traceroute-completed`` is emitted.

        Args:
            session: Session created for this request
            emitter: Ordered event stream of the requesting connection
            batch: Wait for the whole traceroute output before parsing it
            reraise: Re-raise TraceError after emitting ``traceroute-error``

        Returns:
            The session, now in a terminal state

        Raises:
            asyncio.CancelledError: If the caller cancelled; the session is
                discarded and nothing further is emitted
        """
        await emitter.emit(session.started_event())
        if not session.is_running:
            return session

        lookups = LookupCache(self.locator, self.memoize)
        results: asyncio.Queue = asyncio.Queue()
        enrichment: set[asyncio.Task] = set()
        requested: set[int] = set()
        applier = asyncio.ensure_future(self._apply_locations(session, emitter, results))

        events = self._batch_events(session.target) if batch else self.runner.stream(session.target)
        try:
            async with aclosing(events):
                async for item in events:
                    if isinstance(item, HopFact):
                        await emitter.emit(session.record_hop(item))
                        if item.ip and item.hop_number not in requested:
                            requested.add(item.hop_number)
                            task = asyncio.ensure_future(
                                self._enrich(session.id, item, lookups, results)
                            )
                            enrichment.add(task)
                            task.add_done_callback(enrichment.discard)
                    elif isinstance(item, Diagnostic):
                        await emitter.emit(session.record_diagnostic(item.text))
                    elif isinstance(item, RunnerExit):
                        logger.debug(
                            f"traceroute to {session.target} exited {item.exit_code} "
                            f"after {item.hop_count} hop(s)"
                        )

            if enrichment:
                await asyncio.gather(*list(enrichment))
            results.put_nowait(None)
            await applier
            await emitter.emit(session.complete())
        except TraceError as e:
            await emitter.emit(session.fail(str(e)))
            if reraise:
                raise
        except BaseException:
            session.cancel()
            raise
        finally:
            for task in list(enrichment):
                task.cancel()
            lookups.cancel()
            applier.cancel()

        return session

    async def _batch_events(self, target: str) -> AsyncIterator[RunnerEvent]:
        result = await self.runner.run_batch(target)
        for fact in result.facts:
            yield fact
        yield RunnerExit(exit_code=result.exit_code, hop_count=result.hop_count)

    async def _enrich(
        self, session_id: str, fact: HopFact, lookups: LookupCache, results: asyncio.Queue
    ):
        try:
            location = await asyncio.wait_for(lookups.lookup(fact.ip), self.enrich_timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Geolocation of {fact.ip} timed out")
            return
        if location is not None:
            results.put_nowait((session_id, fact.hop_number, fact.ip, location))

    async def _apply_locations(
        self, session: TraceSession, emitter: SessionEventEmitter, results: asyncio.Queue
    ):
        while True:
            item = await results.get()
            if item is None:
                return
            session_id, hop_number, ip, location = item
            await emitter.emit(session.record_location(session_id, hop_number, ip, location))

    async def close(self):
        await self.locator.close()


# Global orchestrator instance
_orchestrator: Optional[TraceOrchestrator] = None


def get_orchestrator() -> TraceOrchestrator:
    """Get the global trace orchestrator instance.

    Returns:
        TraceOrchestrator instance
    """
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TraceOrchestrator()
    return _orchestrator


async def close_orchestrator():
    """Release the global orchestrator's HTTP client, if one was created."""
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.close()
        _orchestrator = None
