"""
Error taxonomy for trace execution.

Only ValidationError, ProcessSpawnError and ProcessAbnormalExit terminate a
trace session. EnrichmentUnavailable never leaves the geolocation layer; a line
that yields no hop is not an error at all (the parser returns None).
"""


class TraceError(Exception):
    """Base class for errors that end a trace session."""


class ValidationError(TraceError):
    """Target is empty or not a single safe host token."""


class ProcessSpawnError(TraceError):
    """The path-discovery executable could not be started."""


class ProcessAbnormalExit(TraceError):
    """The path-discovery process exited non-zero, was killed or timed out."""

    def __init__(self, message: str, exit_code=None):
        super().__init__(message)
        self.exit_code = exit_code


class EnrichmentUnavailable(Exception):
    """A geolocation lookup failed, timed out or returned unusable data."""
