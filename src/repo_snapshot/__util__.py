# pyright: standard

"""repo-snapshot: repo_snapshot/__util__.py
Common error types and small helpers shared by the core and the CLI.
"""

import time

DATE_FORMAT = "%Y%m%dT%H%M%S"


class AbortError(Exception):
    """Base class for errors that abort a backup run.

    A run that raises an ``AbortError`` never finalizes its snapshot.
    """


class TransportUnavailable(AbortError):
    """The remote command channel cannot be reached."""


class GCSuspendFailed(AbortError):
    """Background compaction could not be suspended on the source host."""


class GCResumeFailed(AbortError):
    """Background compaction could not be re-enabled on the source host."""


class PhaseTransferFailed(AbortError):
    """A transfer phase failed; the remaining phases are not run."""

    def __init__(self, phase: str, message: str) -> None:
        super().__init__(f"phase '{phase}' failed: {message}")
        self.phase = phase


class RunInterrupted(AbortError):
    """An operator interrupt stopped the run before all phases completed."""


class SegmentFetchFailed(Exception):
    """A single log segment could not be fetched. Not fatal for the run."""

    def __init__(self, segment: str, message: str) -> None:
        super().__init__(f"segment '{segment}': {message}")
        self.segment = segment


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"--[ {caption} ]--"


def date_to_str(timestamp: time.struct_time | None = None, fmt: str | None = None) -> str:
    """Format a struct_time (default: now) as a snapshot name."""
    if timestamp is None:
        timestamp = time.localtime()
    return time.strftime(fmt or DATE_FORMAT, timestamp)


def str_to_date(time_string: str, fmt: str | None = None) -> time.struct_time:
    """Parse a snapshot name back into a struct_time."""
    return time.strptime(time_string, fmt or DATE_FORMAT)


def human_bytes(size: float) -> str:
    """Render a byte count with a binary unit suffix."""
    if abs(size) < 1024:
        return f"{int(size)} B"
    for unit in ("KiB", "MiB", "GiB"):
        size /= 1024
        if abs(size) < 1024:
            return f"{size:.1f} {unit}"
    return f"{size / 1024:.1f} TiB"
