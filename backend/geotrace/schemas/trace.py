"""
Pydantic schemas for trace requests, hops and pushed events.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..models import Hop, Location, TraceEvent


# Request schemas
class TraceRequest(BaseModel):
    """Trace creation schema (one-shot and streaming).

    A missing target is accepted here so the session rejects it with
    "target required" like any other invalid destination.
    """

    target: str = ""


# Hop schemas
class LocationResponse(BaseModel):
    """Location response schema."""

    lat: float
    lng: float
    city: str
    country: str

    @classmethod
    def from_location(cls, location: Location) -> "LocationResponse":
        return cls(lat=location.lat, lng=location.lng, city=location.city, country=location.country)


class HopResponse(BaseModel):
    """Hop response schema, camelCase on the wire."""

    hop_number: int
    ip: str
    hostname: str
    latency_ms: int
    location: Optional[LocationResponse] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_hop(cls, hop: Hop) -> "HopResponse":
        return cls(
            hop_number=hop.hop_number,
            ip=hop.ip,
            hostname=hop.hostname,
            latency_ms=hop.latency_ms,
            location=LocationResponse.from_location(hop.location) if hop.location else None,
        )


class TraceResponse(BaseModel):
    """One-shot trace result."""

    hops: list[HopResponse] = []


class ErrorResponse(BaseModel):
    """Error payload returned to one-shot callers."""

    error: str


# Streaming message schemas
class TraceEventMessage(BaseModel):
    """Streamed trace event, one per WebSocket frame or NDJSON line."""

    event: str
    data: dict[str, Any] = {}

    @classmethod
    def from_event(cls, event: TraceEvent) -> "TraceEventMessage":
        if event.hop is not None:
            data = HopResponse.from_hop(event.hop).model_dump(by_alias=True)
        else:
            data = dict(event.data)
        return cls(event=event.type.value, data=data)
