"""
Trace lifecycle types.

This module defines the trace status enumeration, the vocabulary of events a
trace session emits, and the non-hop events produced by the process runner.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from .hop import Hop


class TraceStatus(str, enum.Enum):
    """Enumeration of possible trace statuses.

    Attributes:
        IDLE: Trace request not yet accepted
        RUNNING: Trace is currently in progress
        COMPLETED: Path-discovery process finished successfully
        FAILED: Trace failed, was cancelled or the client went away
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TraceStatus.COMPLETED, TraceStatus.FAILED)


class TraceEventType(str, enum.Enum):
    """Names of the events pushed to observing clients."""

    STARTED = "traceroute-started"
    HOP_DISCOVERED = "hop-discovered"
    HOP_LOCATION_UPDATED = "hop-location-updated"
    DIAGNOSTIC = "trace-error-diagnostic"
    COMPLETED = "traceroute-completed"
    ERROR = "traceroute-error"

    @property
    def is_terminal(self) -> bool:
        return self in (TraceEventType.COMPLETED, TraceEventType.ERROR)


@dataclass(frozen=True)
class TraceEvent:
    """A session state transition ready to be serialized for a transport.

    Hop events carry a detached snapshot in ``hop``; every other event carries
    its payload in ``data``.
    """

    type: TraceEventType
    session_id: str
    hop: Optional[Hop] = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Diagnostic:
    """A line the path-discovery process wrote to standard error."""

    text: str


@dataclass(frozen=True)
class RunnerExit:
    """Terminal event of a successful streaming run."""

    exit_code: int
    hop_count: int
