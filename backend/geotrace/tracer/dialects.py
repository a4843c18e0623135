"""
Output dialects of the path-discovery executables.

Unix ``traceroute`` prints a numeric table::

    traceroute to dns.google (8.8.8.8), 30 hops max, 60 byte packets
     1  _gateway (192.168.1.1)  1.912 ms  1.843 ms  1.790 ms
     2  * * *
     3  dns.google (8.8.8.8)  11.204 ms  10.998 ms  11.027 ms

Windows ``tracert`` prints a narrative with latencies first::

    Tracing route to dns.google [8.8.8.8]
    over a maximum of 30 hops:

      1    <1 ms    <1 ms    <1 ms  192.168.1.1
      2     *        *        *     Request timed out.
      3    11 ms    10 ms    11 ms  dns.google [8.8.8.8]

    Trace complete.

A dialect is selected once per runner; the parser only reads its constants.
"""

import platform
import re
from dataclasses import dataclass


@dataclass(frozen=True)
class OutputDialect:
    """Constants needed to run and parse one traceroute flavour.

    Attributes:
        name: Dialect identifier ("unix" or "windows")
        command: Default executable name
        banner_markers: Substrings identifying header/footer lines to discard
        latency_unit: Token following each round-trip time
        hostname_pattern: Regex with a ``name`` group matching "<name> <ip>"
            where the IP is wrapped the dialect's way; ``{ip}`` is replaced
            with the escaped address before compiling
    """

    name: str
    command: str
    banner_markers: tuple[str, ...]
    latency_unit: str
    hostname_pattern: str

    def is_banner(self, line: str) -> bool:
        lowered = line.lower()
        return any(marker in lowered for marker in self.banner_markers)

    def hostname_regex(self, ip: str) -> "re.Pattern[str]":
        return re.compile(self.hostname_pattern.format(ip=re.escape(ip)))


UNIX = OutputDialect(
    name="unix",
    command="traceroute",
    banner_markers=("traceroute to", "hops max", "byte packets"),
    latency_unit="ms",
    hostname_pattern=r"(?P<name>[^\s()]+)\s+\({ip}\)",
)

WINDOWS = OutputDialect(
    name="windows",
    command="tracert",
    banner_markers=("tracing route to", "over a maximum of", "trace complete"),
    latency_unit="ms",
    hostname_pattern=r"(?P<name>[^\s\[\]]+)\s+\[{ip}\]",
)

DIALECTS = {UNIX.name: UNIX, WINDOWS.name: WINDOWS}


def get_dialect(name: str = "auto") -> OutputDialect:
    """
    Resolve a dialect by name.

    Args:
        name: "unix", "windows" or "auto" (pick by host operating system)

    Returns:
        The matching OutputDialect

    Raises:
        ValueError: If the name is unknown
    """
    if name == "auto":
        return WINDOWS if platform.system() == "Windows" else UNIX
    try:
        return DIALECTS[name]
    except KeyError:
        raise ValueError(f"Unknown traceroute dialect '{name}'")
