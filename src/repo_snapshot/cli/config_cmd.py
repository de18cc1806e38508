"""Config command: Configuration management."""

import argparse
import logging

from ..__logger__ import create_logger
from ..config import ConfigError, find_config_file, load_config
from ..config.loader import CONFIG_PATHS, generate_example_config
from .common import EXIT_FAILURE, EXIT_OK, get_log_level

logger = logging.getLogger(__name__)


def execute_config(args: argparse.Namespace) -> int:
    """Execute the config command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    action = getattr(args, "config_action", None)

    if action == "validate":
        return _validate_config(args)
    elif action == "init":
        return _init_config(args)
    else:
        print("Usage: repo-snapshot config <validate|init>")
        return EXIT_FAILURE


def _validate_config(args: argparse.Namespace) -> int:
    """Validate configuration file."""
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Searched locations:")
            for path in CONFIG_PATHS:
                print(f"  {path}")
            return EXIT_FAILURE

        print(f"Validating: {config_path}")
        config, warnings = load_config(config_path)

        if warnings:
            print("")
            print("Warnings:")
            for warning in warnings:
                print(f"  - {warning}")

        print("")
        print("Configuration is valid.")
        print(f"  Source: {config.source.host or 'localhost'}:{config.source.repositories_path}")
        print(f"  Snapshot root: {config.global_config.snapshot_root}")
        print(f"  Log segments: {'enabled' if config.audit_log.enabled else 'disabled'}")

        return EXIT_OK

    except ConfigError as e:
        print(f"Configuration error: {e}")
        return EXIT_FAILURE


def _init_config(args: argparse.Namespace) -> int:
    """Generate example configuration."""
    content = generate_example_config()

    output = getattr(args, "output", None)
    if output:
        try:
            with open(output, "w") as f:
                f.write(content)
            print(f"Example configuration written to: {output}")
        except OSError as e:
            print(f"Error writing file: {e}")
            return EXIT_FAILURE
    else:
        print(content)

    return EXIT_OK
