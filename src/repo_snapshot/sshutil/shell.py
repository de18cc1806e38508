"""repo-snapshot: repo_snapshot/sshutil/shell.py
Command channel to the source host: run a command and return its output.
"""

import contextlib
import logging
import subprocess
from typing import IO, Iterator, List, Optional

from ..__util__ import TransportUnavailable
from .master import SSHMasterManager

logger = logging.getLogger(__name__)

# ssh reports its own connection failures with exit status 255
SSH_TRANSPORT_FAILURE = 255


class CommandError(Exception):
    """A command ran on the source host and failed."""

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"'{command}' exited with code {returncode}: {detail}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class Shell:
    """Generic structure of a command channel."""

    host = "localhost"
    transport_failure_code: Optional[int] = None

    def _argv(self, command: str) -> List[str]:
        raise NotImplementedError

    def _check_returncode(self, command: str, returncode: int, stderr: str) -> None:
        if returncode == 0:
            return
        if self.transport_failure_code is not None and returncode == self.transport_failure_code:
            raise TransportUnavailable(
                f"cannot reach {self.host}: {stderr.strip() or 'connection failed'}"
            )
        raise CommandError(command, returncode, stderr)

    def run(self, command: str, timeout: Optional[float] = None) -> str:
        """Run ``command`` and return its standard output.

        Raises:
            TransportUnavailable: The host cannot be reached
            CommandError: The command itself failed
        """
        argv = self._argv(command)
        logger.debug("Running on %s: %s", self.host, command)
        try:
            result = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                start_new_session=True,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TransportUnavailable(f"cannot run command on {self.host}: {e}") from e
        self._check_returncode(command, result.returncode, result.stderr)
        return result.stdout

    @contextlib.contextmanager
    def stream(self, command: str) -> Iterator[IO[bytes]]:
        """Run ``command`` and yield its standard output as a byte stream.

        The exit status is checked when the block completes.
        """
        argv = self._argv(command)
        logger.debug("Streaming from %s: %s", self.host, command)
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise TransportUnavailable(f"cannot run command on {self.host}: {e}") from e

        assert proc.stdout is not None and proc.stderr is not None
        try:
            yield proc.stdout
            proc.stdout.close()
            stderr = proc.stderr.read().decode(errors="replace")
            returncode = proc.wait()
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        finally:
            proc.stderr.close()
        self._check_returncode(command, returncode, stderr)

    def check(self) -> None:
        """Verify the channel works.

        Raises:
            TransportUnavailable: The host cannot be reached
        """
        try:
            self.run("true", timeout=60)
        except CommandError as e:
            raise TransportUnavailable(f"{self.host} is not usable: {e}") from e


class RemoteShell(Shell):
    """Commands over ssh, multiplexed through an :class:`SSHMasterManager`."""

    transport_failure_code = SSH_TRANSPORT_FAILURE

    def __init__(self, master: SSHMasterManager) -> None:
        self.master = master
        self.host = master.hostname

    def _argv(self, command: str) -> List[str]:
        return self.master.get_ssh_base_cmd() + [command]


class LocalShell(Shell):
    """Commands on the local host, for a source on the local filesystem."""

    def _argv(self, command: str) -> List[str]:
        return ["/bin/sh", "-c", command]
