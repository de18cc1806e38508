"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_CACHE_DIRS = ["__nodeload_archives__", "__gitmon__", "__render__"]


@dataclass
class SourceConfig:
    """Source host configuration.

    Attributes:
        host: Source hostname; empty means the repositories are local
        port: SSH port on the source host
        user: SSH user on the source host
        ssh_key: Path to SSH private key
        repositories_path: Root of the repository namespace on the source
        rsync_path: Remote rsync invocation (e.g. "sudo -u git rsync")
        cache_dirs: Special-namespace directories that are pure caches
    """

    host: str = ""
    port: int = 22
    user: str = "admin"
    ssh_key: Optional[str] = None
    repositories_path: str = "/data/repositories"
    rsync_path: str = "rsync"
    cache_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_CACHE_DIRS))

    @property
    def is_remote(self) -> bool:
        return bool(self.host)


@dataclass
class GCConfig:
    """Background compaction control on the source host.

    Attributes:
        suspend_command: Command that stops new compactions from starting
        resume_command: Command that re-enables compaction
        busy_command: Command printing something while a compaction still runs
        wait_timeout: Seconds to wait for in-flight compaction to finish
        poll_interval: Seconds between busy checks
    """

    suspend_command: str = "touch /data/repositories/.sync_in_progress"
    resume_command: str = "rm -f /data/repositories/.sync_in_progress"
    busy_command: str = "pgrep -f 'git (gc|repack)' || true"
    wait_timeout: float = 30.0
    poll_interval: float = 1.0


@dataclass
class AuditLogConfig:
    """Log-segment store configuration.

    Attributes:
        enabled: Whether to back up the log-segment store
        list_command: Command listing one segment identifier per line
        fetch_command: Command streaming one segment; ``{segment}`` is substituted
        period_command: Command printing the source host's current period label
        parallel_fetches: Max concurrent segment fetches
    """

    enabled: bool = True
    list_command: str = "ls -1 /data/audit-log"
    fetch_command: str = "cat /data/audit-log/{segment}"
    period_command: str = "date -u +%Y-%m"
    parallel_fetches: int = 4


@dataclass
class GlobalConfig:
    """Global configuration settings.

    Attributes:
        snapshot_root: Directory holding one directory per snapshot
        timestamp_format: Format string for snapshot directory names
        compress: Compress transfers (never applied to object/pack data)
        log_file: Path to log file (None for no file logging)
        transaction_log: Path to JSON-lines run journal (None to disable)
        keep_incomplete: Keep snapshot directories of aborted runs
    """

    snapshot_root: str = "/var/backups/repo-snapshot"
    timestamp_format: str = "%Y%m%dT%H%M%S"
    compress: bool = True
    log_file: Optional[str] = None
    transaction_log: Optional[str] = None
    keep_incomplete: bool = False


@dataclass
class Config:
    """Root configuration object."""

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    gc: GCConfig = field(default_factory=GCConfig)
    audit_log: AuditLogConfig = field(default_factory=AuditLogConfig)
