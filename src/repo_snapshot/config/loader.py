"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import tomllib
from pathlib import Path
from typing import Any

from .schema import (
    DEFAULT_CACHE_DIRS,
    AuditLogConfig,
    Config,
    GCConfig,
    GlobalConfig,
    SourceConfig,
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "repo-snapshot" / "config.toml",
    Path("/etc/repo-snapshot/config.toml"),
]


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _expect_table(data: Any, name: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigError(f"[{name}] must be a table")
    return data


def _parse_global(data: dict[str, Any]) -> GlobalConfig:
    """Parse global configuration from dict."""
    return GlobalConfig(
        snapshot_root=data.get("snapshot_root", "/var/backups/repo-snapshot"),
        timestamp_format=data.get("timestamp_format", "%Y%m%dT%H%M%S"),
        compress=data.get("compress", True),
        log_file=data.get("log_file"),
        transaction_log=data.get("transaction_log"),
        keep_incomplete=data.get("keep_incomplete", False),
    )


def _parse_source(data: dict[str, Any]) -> SourceConfig:
    """Parse source host configuration from dict."""
    cache_dirs = data.get("cache_dirs", list(DEFAULT_CACHE_DIRS))
    if not isinstance(cache_dirs, list) or not all(
        isinstance(d, str) for d in cache_dirs
    ):
        raise ConfigError("source.cache_dirs must be a list of directory names")

    return SourceConfig(
        host=data.get("host", ""),
        port=data.get("port", 22),
        user=data.get("user", "admin"),
        ssh_key=data.get("ssh_key"),
        repositories_path=data.get("repositories_path", "/data/repositories"),
        rsync_path=data.get("rsync_path", "rsync"),
        cache_dirs=cache_dirs,
    )


def _parse_gc(data: dict[str, Any]) -> GCConfig:
    """Parse compaction control configuration from dict."""
    defaults = GCConfig()
    return GCConfig(
        suspend_command=data.get("suspend_command", defaults.suspend_command),
        resume_command=data.get("resume_command", defaults.resume_command),
        busy_command=data.get("busy_command", defaults.busy_command),
        wait_timeout=float(data.get("wait_timeout", defaults.wait_timeout)),
        poll_interval=float(data.get("poll_interval", defaults.poll_interval)),
    )


def _parse_audit_log(data: dict[str, Any]) -> AuditLogConfig:
    """Parse log-segment store configuration from dict."""
    defaults = AuditLogConfig()
    fetch_command = data.get("fetch_command", defaults.fetch_command)
    if "{segment}" not in fetch_command:
        raise ConfigError("audit_log.fetch_command must contain '{segment}'")

    return AuditLogConfig(
        enabled=data.get("enabled", defaults.enabled),
        list_command=data.get("list_command", defaults.list_command),
        fetch_command=fetch_command,
        period_command=data.get("period_command", defaults.period_command),
        parallel_fetches=data.get("parallel_fetches", defaults.parallel_fetches),
    )


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if not Path(config.global_config.snapshot_root).is_absolute():
        warnings.append(
            f"snapshot_root '{config.global_config.snapshot_root}' is not absolute"
        )

    if not config.source.repositories_path.startswith("/"):
        warnings.append(
            f"repositories_path '{config.source.repositories_path}' is not absolute"
        )

    if config.gc.wait_timeout <= 0:
        warnings.append("gc.wait_timeout <= 0: in-flight compaction is not awaited")

    if config.gc.poll_interval <= 0:
        warnings.append("gc.poll_interval <= 0, using 1 second")
        config.gc.poll_interval = 1.0

    if config.audit_log.parallel_fetches < 1:
        warnings.append("audit_log.parallel_fetches < 1, using 1")
        config.audit_log.parallel_fetches = 1

    if len(config.source.cache_dirs) != len(set(config.source.cache_dirs)):
        warnings.append("Duplicate entries in source.cache_dirs")

    for name in config.source.cache_dirs:
        if not (name.startswith("__") and name.endswith("__")):
            warnings.append(f"Cache dir '{name}' is not a special '__name__' directory")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    config = Config(
        global_config=_parse_global(_expect_table(data.get("global", {}), "global")),
        source=_parse_source(_expect_table(data.get("source", {}), "source")),
        gc=_parse_gc(_expect_table(data.get("gc", {}), "gc")),
        audit_log=_parse_audit_log(
            _expect_table(data.get("audit_log", {}), "audit_log")
        ),
    )

    # Validate and collect warnings
    warnings = _validate_config(config)

    return config, warnings


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# repo-snapshot configuration
# See documentation for full options

[global]
snapshot_root = "/var/backups/repo-snapshot"
timestamp_format = "%Y%m%dT%H%M%S"
compress = true        # never applied to object/pack data
# log_file = "/var/log/repo-snapshot.log"
# transaction_log = "/var/log/repo-snapshot.jsonl"

[source]
host = "git.example.com"   # leave empty for a local repository root
port = 122
user = "admin"
# ssh_key = "~/.ssh/backup_key"
repositories_path = "/data/repositories"
rsync_path = "sudo -u git rsync"
cache_dirs = ["__nodeload_archives__", "__gitmon__", "__render__"]

[gc]
suspend_command = "touch /data/repositories/.sync_in_progress"
resume_command = "rm -f /data/repositories/.sync_in_progress"
busy_command = "pgrep -f 'git (gc|repack)' || true"
wait_timeout = 30      # seconds, best effort
poll_interval = 1

[audit_log]
enabled = true
list_command = "ls -1 /data/audit-log"
fetch_command = "cat /data/audit-log/{segment}"
period_command = "date -u +%Y-%m"
parallel_fetches = 4
"""
