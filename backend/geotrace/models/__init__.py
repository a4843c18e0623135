"""
Domain models package.
"""

from .hop import Location, HopFact, Hop
from .trace import TraceStatus, TraceEventType, TraceEvent, Diagnostic, RunnerExit

__all__ = [
    "Location",
    "HopFact",
    "Hop",
    "TraceStatus",
    "TraceEventType",
    "TraceEvent",
    "Diagnostic",
    "RunnerExit",
]
