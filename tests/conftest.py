"""
Pytest configuration and fixtures for GeoTrace tests.

This module provides reusable fixtures including sample traceroute output, a
scriptable stand-in for the traceroute executable, a fake geolocation
collaborator and an API test client.
"""
import asyncio
import pytest
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from geotrace.models import Location
from geotrace.tracer.dialects import UNIX
from geotrace.tracer.orchestrator import TraceOrchestrator, get_orchestrator
from geotrace.tracer.runner import TracerouteRunner


GOOGLE_DNS = Location(lat=37.4, lng=-122.1, city="Mountain View", country="USA")
CLOUDFLARE_DNS = Location(lat=-33.49, lng=143.21, city="Sydney", country="Australia")

FAKE_TRACEROUTE_TEMPLATE = '''
import sys
import time

lines = {lines!r}
for index, line in enumerate(lines):
    last = index == len(lines) - 1
    sys.stdout.write(line if (last and not {trailing_newline!r}) else line + "\\n")
    sys.stdout.flush()
    time.sleep({delay!r})
for line in {errors!r}:
    sys.stderr.write(line + "\\n")
    sys.stderr.flush()
time.sleep({linger!r})
sys.exit({exit_code!r})
'''


class FakeLocator:
    """
    Geolocation stand-in returning canned locations.

    Records every looked-up IP in ``calls``; unknown IPs resolve to None.
    """

    def __init__(self, locations=None, delay=0.0):
        self.locations = dict(locations or {})
        self.delay = delay
        self.calls = []
        self.closed = False

    async def lookup(self, ip):
        self.calls.append(ip)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.locations.get(ip)

    async def close(self):
        self.closed = True


class RecordingSink:
    """Event sink that keeps every message it receives."""

    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)

    @property
    def events(self):
        return [message["event"] for message in self.messages]


@pytest.fixture
def sink():
    """Provide a fresh recording sink."""
    return RecordingSink()


@pytest.fixture
def unix_output():
    """
    Provide sample Unix traceroute output.

    Returns:
        str: Output with a banner, a private hop, a timeout and two public hops
    """
    return """traceroute to dns.google (8.8.8.8), 30 hops max, 60 byte packets
 1  _gateway (192.168.1.1)  1.912 ms  1.843 ms  1.790 ms
 2  * * *
 3  one.one.one.one (1.1.1.1)  10.204 ms  9.998 ms  10.027 ms
 4  dns.google (8.8.8.8)  25.4 ms  24.9 ms  25.1 ms
"""


@pytest.fixture
def windows_output():
    """
    Provide sample Windows tracert output.

    Returns:
        str: Narrative output with banners, a private hop, a timeout and public hops
    """
    return """
Tracing route to dns.google [8.8.8.8]
over a maximum of 30 hops:

  1    <1 ms    <1 ms    <1 ms  192.168.1.1
  2     *        *        *     Request timed out.
  3    10 ms     9 ms    10 ms  1.1.1.1
  4    25 ms    24 ms    25 ms  dns.google [8.8.8.8]

Trace complete.
"""


@pytest.fixture
def fake_traceroute(tmp_path):
    """
    Build a throwaway script that behaves like traceroute.

    Returns:
        Callable returning the command (argv without target) that runs the
        script; the target is passed as its last argument and ignored
    """
    counter = {"n": 0}

    def factory(lines=(), errors=(), exit_code=0, delay=0.0, linger=0.0, trailing_newline=True):
        counter["n"] += 1
        script = tmp_path / f"fake_traceroute_{counter['n']}.py"
        script.write_text(
            FAKE_TRACEROUTE_TEMPLATE.format(
                lines=list(lines),
                errors=list(errors),
                exit_code=exit_code,
                delay=delay,
                linger=linger,
                trailing_newline=trailing_newline,
            )
        )
        return [sys.executable, str(script)]

    return factory


@pytest.fixture
def scenario_lines():
    """Three hop lines: one private, two public."""
    return ["1  192.168.1.1  2 ms", "2  8.8.8.8  25 ms", "3  1.1.1.1  10 ms"]


@pytest.fixture
def make_locator():
    """Factory for FakeLocator instances with custom locations or delay."""
    return FakeLocator


@pytest.fixture
def fake_locator():
    """Locator that knows 8.8.8.8 and 1.1.1.1."""
    return FakeLocator({"8.8.8.8": GOOGLE_DNS, "1.1.1.1": CLOUDFLARE_DNS})


@pytest.fixture
def make_orchestrator(fake_traceroute, fake_locator):
    """
    Create orchestrators wired to a fake traceroute script and fake locator.

    Returns:
        Callable accepting the same arguments as ``fake_traceroute`` plus
        ``timeout`` and ``memoize``
    """

    def factory(timeout=10.0, memoize=False, locator=None, **script):
        runner = TracerouteRunner(
            dialect=UNIX, command=fake_traceroute(**script), timeout=timeout, include_timeouts=False
        )
        return TraceOrchestrator(
            runner=runner, locator=locator or fake_locator, memoize=memoize, enrich_timeout=2.0
        )

    return factory


@pytest.fixture
def api_client():
    """
    Create a test client for API endpoint testing.

    Yields:
        Callable ``client(orchestrator)`` returning a TestClient whose
        orchestrator dependency is overridden
    """
    from fastapi.testclient import TestClient
    from geotrace.main import app

    def client(orchestrator):
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        return TestClient(app)

    try:
        yield client
    finally:
        # Clean up
        app.dependency_overrides.clear()
