"""Snapshot directory layout on the backup host.

::

    <root>/
      .repo-snapshot.lock
      current -> 20240501T020000
      20240501T020000/
        .finalized          written last; absent means incomplete
        repositories/
        audit-log/
"""

import json
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from filelock import FileLock

from .. import __util__

logger = logging.getLogger(__name__)

FINALIZED_MARKER = ".finalized"
CURRENT_LINK = "current"
LOCK_FILE = ".repo-snapshot.lock"
REPOSITORIES_DIR = "repositories"
AUDIT_LOG_DIR = "audit-log"


@dataclass
class Snapshot:
    """One snapshot directory."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def finalized(self) -> bool:
        return (self.path / FINALIZED_MARKER).is_file()

    @property
    def repositories_dir(self) -> Path:
        return self.path / REPOSITORIES_DIR

    @property
    def audit_log_dir(self) -> Path:
        return self.path / AUDIT_LOG_DIR

    def info(self) -> dict[str, Any]:
        """Summary written at finalization, or an empty dict."""
        try:
            return json.loads((self.path / FINALIZED_MARKER).read_text())
        except (OSError, ValueError):
            return {}

    def __str__(self) -> str:
        return self.name


class SnapshotStore:
    """Creates, lists and finalizes snapshots below one root directory."""

    def __init__(self, root: str | Path, timestamp_format: str = __util__.DATE_FORMAT):
        self.root = Path(root)
        self.timestamp_format = timestamp_format

    def lock(self, timeout: float = -1) -> FileLock:
        """Lock serializing runs against this store."""
        self.root.mkdir(parents=True, exist_ok=True)
        return FileLock(self.root / LOCK_FILE, timeout=timeout)

    def _parse_name(self, name: str) -> Optional[tuple[float, int]]:
        """Timestamp and collision counter encoded in a snapshot name."""
        candidates = [(name, 0)]
        base, sep, suffix = name.rpartition("_")
        if sep and suffix.isdigit():
            candidates.append((base, int(suffix)))
        for stamp, counter in candidates:
            try:
                return time.mktime(__util__.str_to_date(stamp, self.timestamp_format)), counter
            except ValueError:
                continue
        return None

    def _sort_key(self, snapshot: Snapshot) -> tuple:
        parsed = self._parse_name(snapshot.name)
        if parsed is None:
            parsed = (snapshot.path.stat().st_mtime, 0)
        return (*parsed, snapshot.name)

    def list_snapshots(self) -> list[Snapshot]:
        """All snapshot directories, oldest first, finalized or not."""
        if not self.root.is_dir():
            return []
        snapshots = [
            Snapshot(entry)
            for entry in self.root.iterdir()
            if entry.is_dir()
            and not entry.is_symlink()
            and not entry.name.startswith(".")
        ]
        return sorted(snapshots, key=self._sort_key)

    def current(self) -> Optional[Snapshot]:
        """Snapshot the ``current`` pointer refers to, if any."""
        link = self.root / CURRENT_LINK
        if not link.is_symlink():
            return None
        target = (self.root / os.readlink(link)).resolve()
        if not target.is_dir() or target.parent != self.root.resolve():
            logger.warning("Dangling or foreign 'current' pointer: %s", target)
            return None
        return Snapshot(self.root / target.name)

    def latest_complete(self, exclude: Optional[Snapshot] = None) -> Optional[Snapshot]:
        """Newest finalized snapshot; prefers the ``current`` pointer."""
        current = self.current()
        if current is not None and current.finalized and current != exclude:
            return current

        for snapshot in reversed(self.list_snapshots()):
            if snapshot.finalized and snapshot != exclude:
                return snapshot
        return None

    def create(self) -> Snapshot:
        """Create a new, empty, unfinalized snapshot directory."""
        self.root.mkdir(parents=True, exist_ok=True)
        base = __util__.date_to_str(fmt=self.timestamp_format)
        name = base
        counter = 0
        while True:
            path = self.root / name
            try:
                path.mkdir(mode=0o750)
                break
            except FileExistsError:
                counter += 1
                name = f"{base}_{counter}"

        snapshot = Snapshot(path)
        snapshot.repositories_dir.mkdir()
        snapshot.audit_log_dir.mkdir()
        logger.info("Created snapshot directory %s", path)
        return snapshot

    def finalize(self, snapshot: Snapshot, summary: dict[str, Any]) -> None:
        """Mark ``snapshot`` complete and point ``current`` at it."""
        record = dict(summary)
        record.setdefault("finalized_at", time.strftime("%Y-%m-%dT%H:%M:%S%z"))

        marker_tmp = snapshot.path / f"{FINALIZED_MARKER}.tmp"
        marker_tmp.write_text(json.dumps(record, indent=2, sort_keys=True) + "\n")
        os.replace(marker_tmp, snapshot.path / FINALIZED_MARKER)

        link_tmp = self.root / f".{CURRENT_LINK}.tmp"
        link_tmp.unlink(missing_ok=True)
        os.symlink(snapshot.name, link_tmp)
        os.replace(link_tmp, self.root / CURRENT_LINK)
        logger.info("Snapshot %s finalized", snapshot.name)

    def prune_incomplete(self, keep: Optional[Snapshot] = None) -> list[Path]:
        """Remove unfinalized snapshot directories left by aborted runs."""
        removed = []
        for snapshot in self.list_snapshots():
            if snapshot.finalized or snapshot == keep:
                continue
            logger.info("Removing incomplete snapshot %s", snapshot.name)
            shutil.rmtree(snapshot.path)
            removed.append(snapshot.path)
        return removed
