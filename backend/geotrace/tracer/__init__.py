"""
Tracer module: traceroute execution, parsing, enrichment and event streaming.
"""

from .dialects import OutputDialect, UNIX, WINDOWS, get_dialect
from .parser import parse_hop_line, parse_output, is_private_ip
from .geolocation import GeoLocator
from .runner import TracerouteRunner, BatchResult, LineBuffer, validate_target
from .session import TraceSession
from .emitter import SessionEventEmitter
from .orchestrator import TraceOrchestrator, LookupCache, get_orchestrator, close_orchestrator

__all__ = [
    "OutputDialect",
    "UNIX",
    "WINDOWS",
    "get_dialect",
    "parse_hop_line",
    "parse_output",
    "is_private_ip",
    "GeoLocator",
    "TracerouteRunner",
    "BatchResult",
    "LineBuffer",
    "validate_target",
    "TraceSession",
    "SessionEventEmitter",
    "TraceOrchestrator",
    "LookupCache",
    "get_orchestrator",
    "close_orchestrator",
]
