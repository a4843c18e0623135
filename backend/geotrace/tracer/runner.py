"""
traceroute runner for executing path discovery.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Union

import psutil

from ..config import settings
from ..exceptions import ProcessAbnormalExit, ProcessSpawnError, ValidationError
from ..models import Diagnostic, HopFact, RunnerExit
from .dialects import OutputDialect, get_dialect
from .parser import parse_hop_line, parse_output

logger = logging.getLogger(__name__)

MAX_TARGET_LENGTH = 253
TARGET_RE = re.compile(r"^[A-Za-z0-9:][A-Za-z0-9.\-:]*$")

RunnerEvent = Union[HopFact, Diagnostic, RunnerExit]

_EOF = object()


def validate_target(target: Optional[str]) -> str:
    """
    Validate a trace destination before anything is spawned.

    The target is handed to the executable as one argv element, never through a
    shell, but it must still be a single host name or IP literal so it cannot
    smuggle extra arguments or options.

    Args:
        target: Raw destination supplied by the client

    Returns:
        The trimmed target

    Raises:
        ValidationError: If the target is empty, has inner whitespace, shell
            metacharacters, a leading dash or is too long
    """
    if target is None or not target.strip():
        raise ValidationError("target required")

    target = target.strip()
    if any(ch.isspace() for ch in target):
        raise ValidationError("target must be a single host name or IP address")
    if len(target) > MAX_TARGET_LENGTH:
        raise ValidationError(f"target longer than {MAX_TARGET_LENGTH} characters")
    if not TARGET_RE.match(target):
        raise ValidationError(f"target contains invalid characters: {target!r}")
    return target


class LineBuffer:
    """Reassembles lines from arbitrarily split output chunks."""

    def __init__(self):
        self._pending = ""

    def feed(self, chunk: str) -> List[str]:
        """Append a chunk and return every line it completed."""
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> str:
        """Return and clear the trailing partial line."""
        rest, self._pending = self._pending.rstrip("\r"), ""
        return rest

    @property
    def pending(self) -> str:
        return self._pending


@dataclass
class BatchResult:
    """Outcome of a batch run: all hop facts in output order."""

    exit_code: int
    facts: List[HopFact] = field(default_factory=list)

    @property
    def hop_count(self) -> int:
        return len({fact.hop_number for fact in self.facts})


class TracerouteRunner:
    """Execute traceroute and turn its output into hop facts."""

    CHUNK_SIZE = 4096
    KILL_GRACE_SECONDS = 2.0

    def __init__(
        self,
        dialect: Optional[OutputDialect] = None,
        command: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        include_timeouts: Optional[bool] = None,
    ):
        """
        Initialize traceroute runner.

        Args:
            dialect: Output dialect; defaults to ``settings.traceroute_dialect``
            command: Executable and leading arguments; the target is appended
                as the final argument. Defaults to the configured command or
                the dialect's executable, plus ``settings.traceroute_args``
            timeout: Upper bound in seconds for one run
            include_timeouts: Report ``* * *`` hop slots as placeholder facts
        """
        self.dialect = dialect or get_dialect(settings.traceroute_dialect)
        if command is None:
            command = [settings.traceroute_command or self.dialect.command]
            command += list(settings.traceroute_args)
        self.command = list(command)
        self.timeout = timeout if timeout is not None else settings.trace_timeout
        self.include_timeouts = (
            include_timeouts if include_timeouts is not None else settings.include_timeout_hops
        )

    def build_command(self, target: str) -> List[str]:
        """Return the argv for tracing ``target`` (validated)."""
        return self.command + [validate_target(target)]

    async def run_batch(self, target: str) -> BatchResult:
        """
        Run traceroute to completion and parse all of its output.

        Args:
            target: Destination host name or IP

        Returns:
            BatchResult with every hop fact in output order

        Raises:
            ValidationError: If the target is rejected (nothing is spawned)
            ProcessSpawnError: If traceroute cannot be started
            ProcessAbnormalExit: On non-zero exit or timeout; partial output
                is discarded
        """
        argv = self.build_command(target)
        process = await self._spawn(argv)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), self.timeout)
        except asyncio.TimeoutError:
            raise ProcessAbnormalExit(
                f"traceroute to {argv[-1]} timed out after {self.timeout:g}s"
            )
        finally:
            await self._terminate(process)

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() if stderr else ""
            raise ProcessAbnormalExit(
                f"traceroute failed: {detail or f'exit status {process.returncode}'}",
                exit_code=process.returncode,
            )

        facts = parse_output(stdout.decode(errors="replace"), self.dialect, self.include_timeouts)
        logger.info(f"traceroute to {argv[-1]} finished with {len(facts)} hop line(s)")
        return BatchResult(exit_code=process.returncode, facts=facts)

    async def stream(self, target: str) -> AsyncIterator[RunnerEvent]:
        """
        Run traceroute and yield events while output arrives.

        Yields HopFact for each parsed stdout line and Diagnostic for each
        stderr line, in arrival order, then a single RunnerExit. Closing the
        iterator early (or cancelling the consumer) terminates the process.

        Raises:
            ValidationError: If the target is rejected (nothing is spawned)
            ProcessSpawnError: If traceroute cannot be started
            ProcessAbnormalExit: On non-zero exit or timeout, after every
                event produced before the exit has been yielded
        """
        argv = self.build_command(target)
        process = await self._spawn(argv)

        queue: asyncio.Queue = asyncio.Queue()
        pumps = [
            asyncio.ensure_future(self._pump_stdout(process.stdout, queue)),
            asyncio.ensure_future(self._pump_stderr(process.stderr, queue)),
        ]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        hop_numbers = set()

        try:
            open_streams = len(pumps)
            while open_streams:
                item = await asyncio.wait_for(queue.get(), max(deadline - loop.time(), 0))
                if item is _EOF:
                    open_streams -= 1
                    continue
                if isinstance(item, HopFact):
                    hop_numbers.add(item.hop_number)
                yield item
            exit_code = await asyncio.wait_for(process.wait(), max(deadline - loop.time(), 0))
        except asyncio.TimeoutError:
            raise ProcessAbnormalExit(
                f"traceroute to {argv[-1]} timed out after {self.timeout:g}s"
            )
        finally:
            for pump in pumps:
                pump.cancel()
            await self._terminate(process)

        if exit_code != 0:
            raise ProcessAbnormalExit(
                f"traceroute exited with status {exit_code}", exit_code=exit_code
            )
        yield RunnerExit(exit_code=exit_code, hop_count=len(hop_numbers))

    async def _spawn(self, argv: List[str]) -> asyncio.subprocess.Process:
        logger.debug(f"Spawning {argv}")
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ProcessSpawnError(
                f"{argv[0]} not found. Please install traceroute: "
                "brew install traceroute (macOS) or apt-get install traceroute (Linux)"
            )
        except OSError as e:
            raise ProcessSpawnError(f"failed to start {argv[0]}: {e}")

    async def _pump_stdout(self, stream: asyncio.StreamReader, queue: asyncio.Queue):
        buffer = LineBuffer()
        try:
            while True:
                chunk = await stream.read(self.CHUNK_SIZE)
                if not chunk:
                    break
                for line in buffer.feed(chunk.decode(errors="replace")):
                    self._enqueue_line(line, queue)
            # Best-effort parse of an unterminated last line
            self._enqueue_line(buffer.flush(), queue)
        finally:
            queue.put_nowait(_EOF)

    def _enqueue_line(self, line: str, queue: asyncio.Queue):
        fact = parse_hop_line(line, self.dialect, self.include_timeouts)
        if fact is not None:
            queue.put_nowait(fact)

    async def _pump_stderr(self, stream: asyncio.StreamReader, queue: asyncio.Queue):
        try:
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                text = raw.decode(errors="replace").strip()
                if text:
                    queue.put_nowait(Diagnostic(text=text))
        finally:
            queue.put_nowait(_EOF)

    async def _terminate(self, process: asyncio.subprocess.Process):
        """Stop the process and any children it started, if still running."""
        if process.returncode is not None:
            return

        try:
            parent = psutil.Process(process.pid)
            tree = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            tree = []

        logger.info(f"Terminating traceroute process {process.pid}")
        for proc in tree:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        try:
            await asyncio.wait_for(process.wait(), self.KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"traceroute process {process.pid} ignored SIGTERM, killing")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

        for proc in tree[:-1]:
            try:
                if proc.is_running():
                    proc.kill()
            except psutil.NoSuchProcess:
                pass
