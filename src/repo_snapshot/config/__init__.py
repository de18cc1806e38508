"""Configuration system for repo-snapshot.

This module provides TOML-based configuration loading, validation,
and schema definitions for snapshot runs.
"""

from .loader import ConfigError, find_config_file, generate_example_config, load_config
from .schema import (
    AuditLogConfig,
    Config,
    GCConfig,
    GlobalConfig,
    SourceConfig,
)

__all__ = [
    "AuditLogConfig",
    "Config",
    "GCConfig",
    "GlobalConfig",
    "SourceConfig",
    "load_config",
    "find_config_file",
    "generate_example_config",
    "ConfigError",
]
