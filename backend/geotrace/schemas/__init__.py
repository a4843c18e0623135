"""
Pydantic schemas package.
"""

from .trace import (
    TraceRequest,
    LocationResponse,
    HopResponse,
    TraceResponse,
    ErrorResponse,
    TraceEventMessage,
)

__all__ = [
    "TraceRequest",
    "LocationResponse",
    "HopResponse",
    "TraceResponse",
    "ErrorResponse",
    "TraceEventMessage",
]
