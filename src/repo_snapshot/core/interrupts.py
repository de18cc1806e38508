"""Operator interrupt handling for a backup run.

The first SIGINT/SIGTERM asks the run to stop after the current phase. A
second one aborts the current phase by raising ``KeyboardInterrupt``, except
while a shielded section (resuming compaction) is running.
"""

import contextlib
import logging
import signal
import threading
from typing import Iterator

from ..__util__ import RunInterrupted

logger = logging.getLogger(__name__)


class InterruptHandler:
    """Tracks interrupt requests and installs the signal handlers for a run."""

    def __init__(self, signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)):
        self.signals = signals
        self.requested = threading.Event()
        self._count = 0
        self._shield_depth = 0
        self._previous: dict[signal.Signals, object] = {}

    def __enter__(self) -> "InterruptHandler":
        if threading.current_thread() is threading.main_thread():
            for signum in self.signals:
                self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(self, *exc_info) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]
        self._previous.clear()

    def _handle(self, signum, frame) -> None:
        self._count += 1
        name = signal.Signals(signum).name
        if self._count == 1:
            logger.warning(
                "%s received, stopping after the current phase (repeat to abort it)",
                name,
            )
            self.requested.set()
        elif self._shield_depth:
            logger.warning("%s received while resuming compaction, finishing that first", name)
        else:
            logger.warning("%s received again, aborting", name)
            raise KeyboardInterrupt

    def request(self) -> None:
        """Request a stop without a signal."""
        self._count = max(self._count, 1)
        self.requested.set()

    def check(self) -> None:
        """Raise :class:`RunInterrupted` if a stop was requested."""
        if self.requested.is_set():
            raise RunInterrupted("run interrupted by operator")

    @contextlib.contextmanager
    def shielded(self) -> Iterator[None]:
        """Section that a repeated interrupt must not abort."""
        self._shield_depth += 1
        try:
            yield
        finally:
            self._shield_depth -= 1
