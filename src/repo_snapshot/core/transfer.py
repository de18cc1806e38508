"""Transfer executors: one bulk copy of a rule-filtered tree per call.

``RsyncTransfer`` drives rsync over ssh against the source host.
``LocalTransfer`` performs the same filtered copy for a source tree on the
local filesystem in pure Python, deciding reuse per entry with the snapshot
linker.
"""

import filecmp
import logging
import os
import re
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .linker import EntryAction, plan_entry
from .rules import Decision, RuleSet

logger = logging.getLogger(__name__)

# rsync exit code 24: some source files vanished before they could be transferred.
# Expected on a live source and harmless for the snapshot's consistency.
RSYNC_OK_CODES = (0, 24)

_FILES_RE = re.compile(r"^Number of (?:regular )?files transferred:\s*([\d,.]+)", re.M)
_BYTES_RE = re.compile(r"^Total transferred file size:\s*([\d,.]+)", re.M)
_REGULAR_RE = re.compile(r"^Number of files:\s*[\d,.]+\s*\(reg:\s*([\d,.]+)", re.M)


class TransferError(Exception):
    """The bulk transfer primitive failed."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


@dataclass
class TransferStats:
    """Counters reported by one transfer."""

    files_transferred: int = 0
    bytes_transferred: int = 0
    files_linked: int = 0

    def as_dict(self) -> dict:
        return {
            "files_transferred": self.files_transferred,
            "bytes_transferred": self.bytes_transferred,
            "files_linked": self.files_linked,
        }


def _parse_count(text: str) -> int:
    return int(text.replace(",", "").replace(".", ""))


def parse_rsync_stats(output: str, linked: bool = False) -> TransferStats:
    """Extract file and byte counts from rsync ``--stats`` output.

    With ``linked`` (a ``--link-dest`` run into an empty destination) every
    regular file that was not transferred was hard-linked from the reference.
    Older rsync releases do not break the file count down; the linked count
    then stays 0.
    """
    stats = TransferStats()
    match = _FILES_RE.search(output)
    if match:
        stats.files_transferred = _parse_count(match.group(1))
    match = _BYTES_RE.search(output)
    if match:
        stats.bytes_transferred = _parse_count(match.group(1))
    match = _REGULAR_RE.search(output)
    if linked and match:
        stats.files_linked = max(0, _parse_count(match.group(1)) - stats.files_transferred)
    return stats


class TransferExecutor:
    """Generic structure of a transfer executor."""

    def transfer(
        self,
        rules: RuleSet,
        remote_root: str | Path,
        local_root: str | Path,
        reference: Optional[Path] = None,
        compress: bool = True,
    ) -> TransferStats:
        """Copy everything ``rules`` admits from ``remote_root`` to ``local_root``.

        When ``reference`` is given, unchanged files are materialized as hard
        links into it instead of being copied.
        """
        raise NotImplementedError


class RsyncTransfer(TransferExecutor):
    """Bulk transfer through rsync, over ssh when a host is set."""

    def __init__(
        self,
        host: str = "",
        user: Optional[str] = None,
        ssh_command: Optional[Sequence[str]] = None,
        rsync_path: str = "rsync",
        extra_args: Sequence[str] = (),
        rsync_binary: str = "rsync",
    ) -> None:
        self.host = host
        self.user = user
        self.ssh_command = list(ssh_command) if ssh_command else None
        self.rsync_path = rsync_path
        self.extra_args = list(extra_args)
        self.rsync_binary = rsync_binary

    def _source_spec(self, remote_root: str | Path) -> str:
        root = str(remote_root).rstrip("/") + "/"
        if not self.host:
            return root
        user_part = f"{self.user}@" if self.user else ""
        return f"{user_part}{self.host}:{root}"

    def build_command(
        self,
        filter_file: Path,
        remote_root: str | Path,
        local_root: str | Path,
        reference: Optional[Path] = None,
        compress: bool = True,
    ) -> list[str]:
        """Build the rsync command line for one phase."""
        cmd = [
            self.rsync_binary,
            "--archive",
            "--hard-links",
            "--numeric-ids",
            "--stats",
        ]
        if compress:
            cmd.append("--compress")
        if reference is not None:
            cmd.append(f"--link-dest={Path(reference).resolve()}")
        if self.host and self.ssh_command:
            cmd.extend(["-e", shlex.join(self.ssh_command)])
        if self.rsync_path and self.rsync_path != "rsync":
            cmd.append(f"--rsync-path={self.rsync_path}")
        cmd.append(f"--filter=merge {filter_file}")
        cmd.extend(self.extra_args)
        cmd.append(self._source_spec(remote_root))
        cmd.append(str(local_root).rstrip("/") + "/")
        return cmd

    def transfer(
        self,
        rules: RuleSet,
        remote_root: str | Path,
        local_root: str | Path,
        reference: Optional[Path] = None,
        compress: bool = True,
    ) -> TransferStats:
        Path(local_root).mkdir(parents=True, exist_ok=True)

        fd, name = tempfile.mkstemp(prefix="repo-snapshot-rules-", suffix=".txt")
        filter_file = Path(name)
        try:
            with os.fdopen(fd, "w") as f:
                f.write("\n".join(rules.to_filter_lines()) + "\n")

            cmd = self.build_command(
                filter_file, remote_root, local_root, reference, compress
            )
            logger.debug("Executing: %s", shlex.join(cmd))
            try:
                # Own session so a terminal interrupt does not kill rsync mid-phase
                result = subprocess.run(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="replace",
                    start_new_session=True,
                )
            except OSError as e:
                raise TransferError(f"cannot execute rsync: {e}") from e
        finally:
            filter_file.unlink(missing_ok=True)

        if result.returncode not in RSYNC_OK_CODES:
            stderr = result.stderr.strip()
            raise TransferError(
                f"rsync exited with code {result.returncode}: {stderr.splitlines()[-1] if stderr else 'no output'}",
                returncode=result.returncode,
                stderr=stderr,
            )
        if result.returncode == 24:
            logger.warning("Some source files vanished during transfer")

        return parse_rsync_stats(result.stdout, linked=reference is not None)


class LocalTransfer(TransferExecutor):
    """Filtered copy of a local source tree with hard-link reuse.

    Args:
        checksum: Compare file contents, not just size/mtime/mode, before
            reusing a reference file.
    """

    def __init__(self, checksum: bool = False) -> None:
        self.checksum = checksum

    def transfer(
        self,
        rules: RuleSet,
        remote_root: str | Path,
        local_root: str | Path,
        reference: Optional[Path] = None,
        compress: bool = True,
    ) -> TransferStats:
        source = Path(remote_root)
        dest = Path(local_root)
        if not source.is_dir():
            raise TransferError(f"source root not found: {source}")

        stats = TransferStats()
        try:
            dest.mkdir(parents=True, exist_ok=True)
            for dirpath, dirnames, filenames in os.walk(source):
                current = Path(dirpath)
                rel = current.relative_to(source).as_posix()
                rel_dir = "" if rel == "." else "/" + rel

                entries = list(filenames)
                descend = []
                for name in sorted(dirnames):
                    if (current / name).is_symlink():
                        entries.append(name)
                    elif rules.evaluate(f"{rel_dir}/{name}", is_dir=True) is Decision.INCLUDE:
                        descend.append(name)
                        (dest / (rel_dir.lstrip("/")) / name).mkdir(exist_ok=True)
                dirnames[:] = descend

                for name in sorted(entries):
                    rel_path = f"{rel_dir}/{name}"
                    included = rules.evaluate(rel_path, is_dir=False) is Decision.INCLUDE
                    self._transfer_entry(
                        current / name,
                        dest / rel_path.lstrip("/"),
                        reference / rel_path.lstrip("/") if reference else None,
                        included,
                        stats,
                    )
        except OSError as e:
            raise TransferError(f"local transfer failed: {e}") from e

        return stats

    def _transfer_entry(
        self,
        src: Path,
        dst: Path,
        ref: Optional[Path],
        included: bool,
        stats: TransferStats,
    ) -> None:
        try:
            src_stat = src.lstat()
        except FileNotFoundError:
            logger.debug("Vanished during transfer: %s", src)
            return
        ref_stat = None
        if ref is not None:
            try:
                ref_stat = ref.lstat()
            except FileNotFoundError:
                ref_stat = None

        action = plan_entry(included, src_stat, ref_stat)
        if action is EntryAction.REUSE and self.checksum:
            if not _same_content(src, ref):
                action = EntryAction.COPY
        if action is EntryAction.SKIP:
            return

        if dst.exists() or dst.is_symlink():
            dst.unlink()

        if action is EntryAction.REUSE:
            try:
                os.link(ref, dst)
                stats.files_linked += 1
                return
            except OSError as e:
                logger.debug("Cannot link %s (%s), copying instead", ref, e)

        if src.is_symlink():
            os.symlink(os.readlink(src), dst)
        else:
            try:
                shutil.copy2(src, dst)
            except FileNotFoundError:
                logger.debug("Vanished during transfer: %s", src)
                return
        stats.files_transferred += 1
        stats.bytes_transferred += src_stat.st_size


def _same_content(a: Path, b: Optional[Path]) -> bool:
    return b is not None and filecmp.cmp(a, b, shallow=False)
