"""Referential-closure verification of a snapshot.

For every repository in a snapshot, each object named by a packed ref, a
loose ref or a reflog entry must be present, either as a loose object or in
a pack. Only ref and reflog targets are checked; full reachability is left
to ``git fsck`` on a restored copy.
"""

import logging
import os
import struct
import time
from dataclasses import dataclass, field
from pathlib import Path

from dulwich.errors import FileFormatException
from dulwich.object_store import DiskObjectStore
from dulwich.reflog import read_reflog
from dulwich.refs import SYMREF, DiskRefsContainer, read_packed_refs_with_peeled

from .layout import classify_path
from .store import REPOSITORIES_DIR

logger = logging.getLogger(__name__)

NULL_SHA = "0" * 40
_HEX_DIGITS = frozenset("0123456789abcdef")


class VerifyError(Exception):
    """Error during verification."""

    pass


@dataclass
class VerifyResult:
    """Result of verifying one repository."""

    repository: str
    passed: bool
    message: str = ""
    refs_checked: int = 0
    missing: list[str] = field(default_factory=list)


@dataclass
class VerifyReport:
    """Complete verification report for one snapshot."""

    location: str
    started_at: float = field(default_factory=time.time)
    completed_at: float = 0.0
    results: list[VerifyResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.errors

    @property
    def duration(self) -> float:
        if self.completed_at:
            return self.completed_at - self.started_at
        return time.time() - self.started_at


def _is_sha(value: str) -> bool:
    return len(value) == 40 and _HEX_DIGITS.issuperset(value)


def collect_ref_targets(repo: Path) -> dict[str, set[str]]:
    """Map object name -> names of the refs/reflogs pointing at it."""
    targets: dict[str, set[str]] = {}

    def add(sha: bytes | None, origin: str) -> None:
        if not sha:
            return
        value = sha.decode("ascii", "replace").strip()
        if _is_sha(value) and value != NULL_SHA:
            targets.setdefault(value, set()).add(origin)

    packed = repo / "packed-refs"
    if packed.is_file():
        with open(packed, "rb") as f:
            for sha, name, peeled in read_packed_refs_with_peeled(f):
                ref = name.decode("utf-8", "replace")
                add(sha, ref)
                add(peeled, f"{ref}^{{}}")

    refs = DiskRefsContainer(str(repo))
    for name in sorted(refs.allkeys()):
        contents = refs.read_loose_ref(name)
        if contents is None or contents.startswith(SYMREF):
            continue
        add(contents, name.decode("utf-8", "replace"))

    logs = repo / "logs"
    for dirpath, _, filenames in os.walk(logs):
        for filename in filenames:
            path = Path(dirpath) / filename
            origin = path.relative_to(repo).as_posix()
            with open(path, "rb") as f:
                for entry in read_reflog(f):
                    add(entry.old_sha, origin)
                    add(entry.new_sha, origin)
    return targets


def _open_object_store(objects: Path) -> DiskObjectStore:
    store = DiskObjectStore(str(objects))
    try:
        for pack in store.packs:
            len(pack.index)
    except (KeyError, ValueError, OSError, struct.error) as e:
        store.close()
        raise VerifyError(f"unreadable pack index in {objects / 'pack'}: {e}") from e
    return store


def verify_repository(repo: Path, name: str = "") -> VerifyResult:
    """Check every ref and reflog target of ``repo`` is present."""
    targets = collect_ref_targets(repo)
    store = _open_object_store(repo / "objects")
    try:
        missing = [
            f"{sha} ({', '.join(sorted(origins))})"
            for sha, origins in sorted(targets.items())
            if sha.encode("ascii") not in store
        ]
    finally:
        store.close()

    result = VerifyResult(
        repository=name or str(repo),
        passed=not missing,
        refs_checked=len(targets),
        missing=missing,
    )
    result.message = (
        f"{len(targets)} targets present" if result.passed else f"{len(missing)} missing objects"
    )
    return result


def find_repositories(root: Path) -> list[tuple[str, Path]]:
    """Repository directories below a namespace root, in any layout."""
    found = []
    for dirpath, dirnames, _ in os.walk(root):
        rel = "/" + Path(dirpath).relative_to(root).as_posix()
        if classify_path(rel) is not None:
            found.append((rel, Path(dirpath)))
            dirnames[:] = []
            continue
        dirnames.sort()
    return found


def verify_snapshot(snapshot_dir: Path) -> VerifyReport:
    """Verify referential closure of every repository in a snapshot."""
    snapshot_dir = Path(snapshot_dir)
    report = VerifyReport(location=str(snapshot_dir))
    root = snapshot_dir / REPOSITORIES_DIR
    if not root.is_dir():
        report.errors.append(f"no repositories directory in {snapshot_dir}")
        report.completed_at = time.time()
        return report

    for name, repo in find_repositories(root):
        try:
            result = verify_repository(repo, name)
        except (OSError, ValueError, VerifyError, FileFormatException) as e:
            result = VerifyResult(repository=name, passed=False, message=str(e))
        if not result.passed:
            logger.warning("%s: %s", name, result.message)
        report.results.append(result)

    report.completed_at = time.time()
    logger.info("Verified %d repositories: %d passed, %d failed", report.total, report.passed, report.failed)
    return report
