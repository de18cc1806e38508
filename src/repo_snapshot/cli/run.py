"""Run command: take one snapshot of the configured source."""

import argparse
import logging
import time

from .. import __util__
from ..__logger__ import create_logger
from ..config import Config
from ..core.interrupts import InterruptHandler
from ..core.operations import build_components, run_backup
from ..core.phases import build_phases
from ..transaction import set_transaction_log
from .common import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    get_log_level,
    load_config_or_report,
)

logger = logging.getLogger(__name__)


def execute_run(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code: 0 on a finalized snapshot, 130 when interrupted, 1 otherwise
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    config = load_config_or_report(args)
    if config is None:
        return EXIT_FAILURE

    # Re-create with the configured log file
    if config.global_config.log_file:
        create_logger(level=log_level, log_file=config.global_config.log_file)

    if getattr(args, "dry_run", False):
        return _dry_run(config)

    set_transaction_log(config.global_config.transaction_log)

    audit_log = not getattr(args, "no_audit_log", False)
    components = build_components(config, audit_log=audit_log)

    logger.info(__util__.log_heading(f"Started at {time.ctime()}"))
    try:
        with InterruptHandler() as interrupts:
            result = run_backup(config, components, interrupts)
    except __util__.RunInterrupted as e:
        logger.warning("%s", e)
        return EXIT_INTERRUPTED
    except KeyboardInterrupt:
        logger.warning("Run aborted by operator")
        return EXIT_INTERRUPTED
    except __util__.AbortError as e:
        logger.error("Run failed: %s", e)
        return EXIT_FAILURE
    finally:
        components.close()

    logger.info(__util__.log_heading(f"Finished at {time.ctime()}"))
    logger.info(
        "Snapshot %s: %d files (%s) transferred, %d reused in %.1fs",
        result.snapshot.name,
        result.files_transferred,
        __util__.human_bytes(result.bytes_transferred),
        result.files_linked,
        result.duration_seconds,
    )
    if result.segments is not None and not result.segments.ok:
        logger.warning(
            "Log-segment backup incomplete: %d failed%s",
            len(result.segments.failed),
            f" ({result.segments.error})" if result.segments.error else "",
        )
    return EXIT_OK


def _dry_run(config: Config) -> int:
    """Show what would be done without making changes."""
    source = config.source
    print("Dry run mode - showing what would be done:")
    print("")
    print(f"Source: {source.host or 'localhost'}:{source.repositories_path}")
    print(f"Snapshot root: {config.global_config.snapshot_root}")
    print(f"Log segments: {'enabled' if config.audit_log.enabled else 'disabled'}")
    print("")

    for number, phase in enumerate(build_phases(source.cache_dirs), 1):
        compress = config.global_config.compress and phase.compress
        print(f"Phase {number}: {phase.name} - {phase.description} (compress={compress})")
        for line in phase.rules.to_filter_lines():
            print(f"    {line}")
        print("")

    return EXIT_OK
