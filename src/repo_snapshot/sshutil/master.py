"""repo-snapshot: repo_snapshot/sshutil/master.py
Shared ssh ControlMaster connection to the source host.
"""

import getpass
import os
import pwd
import subprocess
import threading
from pathlib import Path
from types import TracebackType
from typing import List, Optional, Type

from repo_snapshot.__logger__ import logger


class SSHMasterManager:
    def __init__(
        self,
        hostname: str,
        username: Optional[str] = None,
        port: Optional[int] = None,
        ssh_opts: Optional[List[str]] = None,
        control_dir: Optional[str] = None,
        persist: str = "60",
        identity_file: Optional[str] = None,
    ):
        self.hostname = hostname
        self.username = username or getpass.getuser()
        self.port = port
        self.ssh_opts = ssh_opts or []
        self.persist = persist
        self.identity_file = identity_file

        self.running_as_sudo = os.environ.get("SUDO_USER") is not None and os.geteuid() == 0
        self.sudo_user = os.environ.get("SUDO_USER")

        if self.running_as_sudo and self.sudo_user:
            self.ssh_config_dir = Path(pwd.getpwnam(self.sudo_user).pw_dir) / ".ssh"
        else:
            self.ssh_config_dir = Path.home() / ".ssh"

        if control_dir:
            self.control_dir = Path(control_dir)
        elif self.running_as_sudo:
            self.control_dir = Path(f"/tmp/ssh-controlmasters-{self.sudo_user}")
        else:
            self.control_dir = self.ssh_config_dir / "controlmasters"

        self.control_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self._instance_id = f"{os.getpid()}_{threading.get_ident()}"
        self.control_path = (
            self.control_dir / f"cm_{self.username}_{self.hostname}_{self._instance_id}.sock"
        )
        self._lock = threading.Lock()

    def __enter__(self) -> "SSHMasterManager":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.stop_master()

    @property
    def destination(self) -> str:
        return f"{self.username}@{self.hostname}"

    def _ssh_options(self) -> List[str]:
        # ControlMaster=auto: the first command opens the master, later ones reuse it
        opts = [
            f"ControlPath={self.control_path}",
            "ControlMaster=auto",
            f"ControlPersist={self.persist}",
            "ServerAliveInterval=5",
            "ServerAliveCountMax=6",
            "TCPKeepAlive=yes",
            "ConnectTimeout=15",
            "ConnectionAttempts=3",
            "StrictHostKeyChecking=accept-new",
            "BatchMode=yes",
        ]
        cmd = []
        for opt in opts:
            cmd.extend(["-o", opt])
        cmd.extend(self.ssh_opts)

        if self.port:
            cmd.extend(["-p", str(self.port)])

        if self.identity_file:
            cmd.extend(["-i", str(Path(self.identity_file).expanduser())])
        return cmd

    def rsync_ssh_command(self) -> List[str]:
        """ssh invocation for ``rsync -e`` (rsync appends the destination)."""
        return ["ssh"] + self._ssh_options()

    def get_ssh_base_cmd(self) -> List[str]:
        """Get the base SSH command with all necessary options.

        Returns:
            List[str]: The base SSH command ending with the destination
        """
        return ["ssh"] + self._ssh_options() + [self.destination]

    def is_master_alive(self) -> bool:
        if not self.control_path.exists():
            return False

        cmd = ["ssh", "-O", "check", "-o", f"ControlPath={self.control_path}", self.destination]
        result = subprocess.run(cmd, capture_output=True, check=False)
        return result.returncode == 0

    def stop_master(self) -> bool:
        with self._lock:
            if not self.is_master_alive():
                self.cleanup_socket()
                return True

            cmd = ["ssh", "-O", "exit", "-o", f"ControlPath={self.control_path}", self.destination]
            try:
                subprocess.run(cmd, check=True, capture_output=True)
                return True
            except (OSError, subprocess.CalledProcessError) as e:
                logger.error(f"Failed to stop SSH master: {e}")
                return False
            finally:
                self.cleanup_socket()

    def cleanup_socket(self) -> None:
        try:
            if self.control_path.exists():
                self.control_path.unlink()
        except OSError as e:
            logger.error(f"Failed to cleanup socket: {e}")
