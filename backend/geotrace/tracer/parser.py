"""
Parser for traceroute text output.

Turns one line of ``traceroute``/``tracert`` output into at most one HopFact.
Pure functions only; nothing here performs I/O or raises on bad input.
"""

import ipaddress
import logging
import re
from typing import Iterable, List, Optional

from ..models import HopFact
from .dialects import OutputDialect, UNIX

logger = logging.getLogger(__name__)

HOP_NUMBER_RE = re.compile(r"^\s*(\d+)(?=\s|$)")
IPV4_RE = re.compile(r"(?<![\d.])(\d{1,3}(?:\.\d{1,3}){3})(?!\.?\d)")

# Addresses with no public geolocation; hops through them are never reported
PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)

_latency_patterns = {}


def _latency_regex(unit: str) -> "re.Pattern[str]":
    pattern = _latency_patterns.get(unit)
    if pattern is None:
        pattern = re.compile(r"(?<![\d.])(\d+(?:\.\d+)?)\s*" + re.escape(unit) + r"\b")
        _latency_patterns[unit] = pattern
    return pattern


def is_private_ip(ip: str) -> bool:
    """Check whether an IPv4 address falls in 10/8, 172.16/12 or 192.168/16."""
    try:
        address = ipaddress.IPv4Address(ip)
    except ValueError:
        return False
    return any(address in network for network in PRIVATE_NETWORKS)


def extract_ip(line: str) -> Optional[str]:
    """Return the first valid IPv4 dotted-quad anywhere in the line."""
    for match in IPV4_RE.finditer(line):
        candidate = match.group(1)
        try:
            ipaddress.IPv4Address(candidate)
        except ValueError:
            continue
        return candidate
    return None


def extract_latency(line: str, unit: str = "ms") -> int:
    """Return the first round-trip time in the line, rounded to whole ms (0 if none)."""
    match = _latency_regex(unit).search(line)
    if not match:
        return 0
    return int(round(float(match.group(1))))


def extract_hostname(line: str, ip: str, dialect: OutputDialect) -> str:
    """Return the name printed next to the IP, falling back to the IP itself."""
    match = dialect.hostname_regex(ip).search(line)
    if match:
        return match.group("name")
    return ip


def parse_hop_line(
    line: str, dialect: OutputDialect = UNIX, include_timeouts: bool = False
) -> Optional[HopFact]:
    """
    Parse one line of traceroute output.

    Args:
        line: Raw output line (trailing newline optional)
        dialect: Output dialect the line was produced in
        include_timeouts: Return a placeholder fact (empty IP) for hop slots
            that report no address instead of dropping them

    Returns:
        HopFact, or None for banners, blank or unparsable lines, timeouts
        (unless requested) and hops in private address ranges
    """
    if not line or not line.strip():
        return None

    if dialect.is_banner(line):
        return None

    number_match = HOP_NUMBER_RE.match(line)
    if not number_match:
        return None
    hop_number = int(number_match.group(1))
    if hop_number < 1:
        return None

    # Ignore the hop number itself when looking for the address
    remainder = line[number_match.end():]
    ip = extract_ip(remainder)
    if ip is None:
        if include_timeouts:
            return HopFact(hop_number=hop_number, ip="", hostname="*", latency_ms=0)
        return None

    if is_private_ip(ip):
        logger.debug(f"Dropping hop {hop_number}: private address {ip}")
        return None

    return HopFact(
        hop_number=hop_number,
        ip=ip,
        hostname=extract_hostname(remainder, ip, dialect),
        latency_ms=extract_latency(remainder, dialect.latency_unit),
    )


def parse_output(
    output: str, dialect: OutputDialect = UNIX, include_timeouts: bool = False
) -> List[HopFact]:
    """Parse complete traceroute output into hop facts, in line order."""
    return parse_lines(output.splitlines(), dialect, include_timeouts)


def parse_lines(
    lines: Iterable[str], dialect: OutputDialect = UNIX, include_timeouts: bool = False
) -> List[HopFact]:
    facts = []
    for line in lines:
        fact = parse_hop_line(line, dialect, include_timeouts)
        if fact is not None:
            facts.append(fact)
    return facts
