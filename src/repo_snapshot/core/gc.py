"""Suspension of background compaction on the source host.

Compaction (``git gc``/``git repack``) may rewrite or prune object storage, so
it must not run while a snapshot is being taken. ``GCSuspensionCoordinator``
suspends it for the duration of a run and guarantees the matching resume.
"""

import contextlib
import logging
import threading
import time
from typing import Callable, Iterator, Optional

from ..__util__ import GCResumeFailed, GCSuspendFailed
from ..config.schema import GCConfig
from ..sshutil.shell import Shell
from .interrupts import InterruptHandler

logger = logging.getLogger(__name__)


class GCControl:
    """Endpoint controlling background compaction on a host."""

    def suspend(self, host: str) -> None:
        """Stop new compactions from starting. Idempotent."""
        raise NotImplementedError

    def resume(self, host: str) -> None:
        """Allow compactions again. Idempotent."""
        raise NotImplementedError

    def compaction_running(self, host: str) -> bool:
        """Whether a compaction is currently in flight."""
        raise NotImplementedError


class CommandGCControl(GCControl):
    """Compaction control through shell commands on the source host."""

    def __init__(self, shell: Shell, config: GCConfig) -> None:
        self.shell = shell
        self.config = config

    def suspend(self, host: str) -> None:
        self.shell.run(self.config.suspend_command)

    def resume(self, host: str) -> None:
        self.shell.run(self.config.resume_command)

    def compaction_running(self, host: str) -> bool:
        return bool(self.shell.run(self.config.busy_command).strip())


class GCSuspension:
    """Proof that compaction is suspended. Its only operation is :meth:`end`."""

    def __init__(self, coordinator: "GCSuspensionCoordinator", host: str) -> None:
        self._coordinator = coordinator
        self.host = host
        self._ended = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return not self._ended

    def end(self) -> None:
        """Resume compaction. Only the first call has an effect."""
        with self._lock:
            if self._ended:
                logger.debug("Compaction on %s already resumed", self.host)
                return
            self._ended = True
        self._coordinator._resume(self.host)


class GCSuspensionCoordinator:
    """Brackets a run with suspend/resume of compaction.

    Args:
        control: Compaction control endpoint
        wait_timeout: Seconds to wait for an in-flight compaction to finish.
            The wait is best effort: the run proceeds when it elapses.
        poll_interval: Seconds between busy checks
        interrupts: Handler whose shield protects the resume call
    """

    def __init__(
        self,
        control: GCControl,
        wait_timeout: float = 30.0,
        poll_interval: float = 1.0,
        interrupts: Optional[InterruptHandler] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.control = control
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.interrupts = interrupts
        self._clock = clock
        self._sleep = sleep

    def begin(self, host: str) -> GCSuspension:
        """Suspend compaction on ``host`` and wait for in-flight work.

        Raises:
            GCSuspendFailed: The suspend request failed; nothing to resume.
        """
        logger.info("Suspending background compaction on %s", host)
        try:
            self.control.suspend(host)
        except Exception as e:
            raise GCSuspendFailed(f"cannot suspend compaction on {host}: {e}") from e

        suspension = GCSuspension(self, host)
        try:
            self._wait_for_idle(host)
        except BaseException:
            _end_quietly(suspension)
            raise
        return suspension

    def _wait_for_idle(self, host: str) -> None:
        if self.wait_timeout <= 0:
            return
        deadline = self._clock() + self.wait_timeout
        while True:
            try:
                busy = self.control.compaction_running(host)
            except Exception as e:
                logger.warning("Cannot check for running compaction on %s: %s", host, e)
                return
            if not busy:
                logger.debug("No compaction running on %s", host)
                return
            if self._clock() >= deadline:
                logger.warning(
                    "Compaction still running on %s after %.0fs, proceeding",
                    host,
                    self.wait_timeout,
                )
                return
            logger.info("Waiting for running compaction on %s to finish", host)
            self._sleep(self.poll_interval)

    def _resume(self, host: str) -> None:
        logger.info("Resuming background compaction on %s", host)
        shield = self.interrupts.shielded() if self.interrupts else contextlib.nullcontext()
        with shield:
            try:
                self.control.resume(host)
            except Exception as e:
                raise GCResumeFailed(f"cannot resume compaction on {host}: {e}") from e

    @contextlib.contextmanager
    def suspended(self, host: str) -> Iterator[GCSuspension]:
        """Context manager: compaction is suspended inside, resumed on any exit."""
        suspension = self.begin(host)
        try:
            yield suspension
        except BaseException:
            _end_quietly(suspension)
            raise
        suspension.end()


def _end_quietly(suspension: GCSuspension) -> None:
    """End a suspension while another error propagates; log resume failures."""
    try:
        suspension.end()
    except GCResumeFailed as e:
        logger.error("%s", e)
