"""
Hop model for network path information.

This module defines the in-memory types describing one node along a traced
path: the raw fact parsed from a line of traceroute output, the hop record a
session keeps for it, and the geographic location attached by enrichment.
"""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class Location:
    """Approximate geographic location of an IP address.

    Attributes:
        lat: Latitude in degrees
        lng: Longitude in degrees
        city: City name reported by the lookup service
        country: Country name reported by the lookup service
    """

    lat: float
    lng: float
    city: str
    country: str


@dataclass(frozen=True)
class HopFact:
    """One hop as reported by a single line of traceroute output.

    An empty ``ip`` marks a timeout slot (``* * *``) and is only produced when
    the parser is asked to keep those lines.
    """

    hop_number: int
    ip: str
    hostname: str
    latency_ms: int = 0

    @property
    def is_timeout(self) -> bool:
        return not self.ip


@dataclass
class Hop:
    """Hop record owned by a trace session.

    ``hop_number`` and ``ip`` never change after creation. ``latency_ms`` and
    ``hostname`` follow the latest line reporting the hop, and ``location`` is
    set at most once by a successful lookup.

    Example:
        >>> hop = Hop.from_fact(HopFact(2, "8.8.8.8", "dns.google", 25))
        >>> hop.location is None
        True
    """

    hop_number: int
    ip: str
    hostname: str
    latency_ms: int = 0
    location: Optional[Location] = None

    @classmethod
    def from_fact(cls, fact: HopFact) -> "Hop":
        return cls(
            hop_number=fact.hop_number,
            ip=fact.ip,
            hostname=fact.hostname,
            latency_ms=fact.latency_ms,
        )

    def snapshot(self) -> "Hop":
        """Return a detached copy safe to hand to other tasks."""
        return replace(self)

    def __repr__(self):
        return f"<Hop(hop={self.hop_number}, ip='{self.ip}', latency={self.latency_ms}ms)>"
