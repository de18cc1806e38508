"""Shared CLI utilities and argument parsers."""

import argparse
import logging
from typing import Optional

from ..config import Config, ConfigError, find_config_file, load_config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    else:
        return "INFO"


def load_config_or_report(args: argparse.Namespace) -> Optional[Config]:
    """Find and load the configuration, logging problems.

    Returns:
        The loaded Config, or None if there is none or it is invalid
    """
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Create one with: repo-snapshot config init")
            return None

        logger.debug("Loading configuration from: %s", config_path)
        config, warnings = load_config(config_path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return None

    for warning in warnings:
        logger.warning("Config: %s", warning)
    return config
