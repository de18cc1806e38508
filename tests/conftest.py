"""Pytest configuration and shared fixtures."""

import os
from pathlib import Path

import pytest
from dulwich.object_store import DiskObjectStore
from dulwich.objects import Blob

from repo_snapshot.config import Config, GlobalConfig, SourceConfig
from repo_snapshot.core.gc import GCControl
from repo_snapshot.core.layout import RepoLayout, repository_path
from repo_snapshot.core.segments import SegmentSource
from repo_snapshot.sshutil.shell import Shell
from repo_snapshot.transaction import set_transaction_log


@pytest.fixture(autouse=True)
def _no_transaction_log():
    """Every test starts and ends with the journal disabled."""
    set_transaction_log(None)
    yield
    set_transaction_log(None)


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[global]
snapshot_root = "/var/backups/repo-snapshot"
timestamp_format = "%Y%m%d-%H%M%S"
compress = false
transaction_log = "/var/log/repo-snapshot.jsonl"

[source]
host = "git.example.com"
port = 122
user = "admin"
repositories_path = "/data/repositories"
rsync_path = "sudo -u git rsync"
cache_dirs = ["__gitmon__"]

[gc]
suspend_command = "ghe-gc-disable"
resume_command = "ghe-gc-enable"
wait_timeout = 10
poll_interval = 2

[audit_log]
enabled = true
list_command = "ls -1 /var/log/audit"
fetch_command = "cat /var/log/audit/{segment}"
parallel_fetches = 2
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[source]
host = "git.example.com"
"""


def write_object(repo: Path, content: bytes) -> str:
    """Store a loose blob in ``repo`` and return its name."""
    blob = Blob.from_string(content)
    DiskObjectStore(str(repo / "objects")).add_object(blob)
    return blob.id.decode("ascii")


def write_pack(repo: Path, *contents: bytes) -> list[str]:
    """Store blobs in a new pack in ``repo`` and return their names."""
    blobs = [Blob.from_string(content) for content in contents]
    DiskObjectStore(str(repo / "objects")).add_objects([(blob, None) for blob in blobs])
    return [blob.id.decode("ascii") for blob in blobs]


def make_repository(root: Path, rel: str, branch: str = "main") -> Path:
    """Create a minimal bare repository at ``root/rel`` with one ref and reflog."""
    repo = root / rel.lstrip("/")
    (repo / "refs" / "heads").mkdir(parents=True)
    (repo / "refs" / "tags").mkdir()
    (repo / "logs" / "refs" / "heads").mkdir(parents=True)
    (repo / "objects" / "pack").mkdir(parents=True)
    (repo / "info").mkdir()
    (repo / "hooks").mkdir()
    (repo / "HEAD").write_text(f"ref: refs/heads/{branch}\n")
    (repo / "config").write_text("[core]\n\tbare = true\n")
    (repo / "description").write_text("test repository\n")
    (repo / "info" / "exclude").write_text("# exclude\n")

    first = write_object(repo, f"{rel} first".encode())
    second = write_object(repo, f"{rel} second".encode())
    tag = write_object(repo, f"{rel} tag".encode())
    (repo / "refs" / "heads" / branch).write_text(second + "\n")
    (repo / "packed-refs").write_text(
        "# pack-refs with: peeled fully-peeled sorted\n"
        f"{tag} refs/tags/v1\n"
    )
    (repo / "logs" / "refs" / "heads" / branch).write_text(
        f"{'0' * 40} {first} Dev <dev@example.com> 1700000000 +0000\tcommit (initial)\n"
        f"{first} {second} Dev <dev@example.com> 1700000100 +0000\tcommit\n"
    )
    return repo


@pytest.fixture
def source_tree(tmp_path):
    """A repository namespace with every layout, special stores and /info."""
    root = tmp_path / "source"
    root.mkdir()
    make_repository(root, repository_path("alpha", RepoLayout.FLAT))
    make_repository(root, repository_path("1234", RepoLayout.NETWORK))
    make_repository(root, repository_path("abcd", RepoLayout.GIST))

    (root / "__gitmon__").mkdir()
    (root / "__gitmon__" / "cache.db").write_text("cache")
    (root / "__alambic_assets__").mkdir()
    (root / "__alambic_assets__" / "avatar.png").write_bytes(b"\x89PNG")
    (root / "info" / "lost+found").mkdir(parents=True)
    (root / "info" / "lost+found" / "orphan").write_text("orphan")
    (root / "info" / "nw-layout").write_text("v2\n")
    return root


@pytest.fixture
def local_config(tmp_path, source_tree):
    """Config for a local source tree and a snapshot root below ``tmp_path``."""
    return Config(
        global_config=GlobalConfig(snapshot_root=str(tmp_path / "snapshots")),
        source=SourceConfig(repositories_path=str(source_tree)),
    )


class FakeShell(Shell):
    """Shell that records commands and never spawns processes."""

    host = "fake-host"

    def __init__(self, outputs=None, fail_check=None):
        self.outputs = outputs or {}
        self.fail_check = fail_check
        self.commands = []

    def run(self, command, timeout=None):
        self.commands.append(command)
        return self.outputs.get(command, "")

    def check(self):
        self.commands.append("<check>")
        if self.fail_check is not None:
            raise self.fail_check


class RecordingGC(GCControl):
    """Compaction control that records calls and can be told to fail."""

    def __init__(self, fail_suspend=False, fail_resume=False, busy=()):
        self.calls = []
        self.fail_suspend = fail_suspend
        self.fail_resume = fail_resume
        self.busy = list(busy)

    def suspend(self, host):
        self.calls.append("suspend")
        if self.fail_suspend:
            raise RuntimeError("suspend refused")

    def resume(self, host):
        self.calls.append("resume")
        if self.fail_resume:
            raise RuntimeError("resume refused")

    def compaction_running(self, host):
        self.calls.append("busy?")
        return self.busy.pop(0) if self.busy else False


class FakeSegmentSource(SegmentSource):
    """In-memory log store."""

    def __init__(self, segments, current_period, failing=()):
        self.segments = dict(segments)
        self.period = current_period
        self.failing = set(failing)
        self.fetched = []

    def list_segments(self):
        return sorted(self.segments)

    def current_period(self):
        return self.period

    def fetch(self, segment, out):
        self.fetched.append(segment)
        if segment in self.failing:
            raise OSError("connection reset")
        out.write(self.segments[segment])


def inode(path: Path) -> int:
    return os.stat(path).st_ino


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path
