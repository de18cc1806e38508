"""Verify command: check referential closure of a snapshot."""

import argparse
import logging
from pathlib import Path

from ..__logger__ import create_logger
from ..core.store import SnapshotStore
from ..core.verify import verify_snapshot
from .common import EXIT_FAILURE, EXIT_OK, get_log_level, load_config_or_report

logger = logging.getLogger(__name__)


def execute_verify(args: argparse.Namespace) -> int:
    """Execute the verify command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code: 0 if every repository passed
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    target = getattr(args, "snapshot", None)
    if target and Path(target).is_dir():
        snapshot_dir = Path(target)
    else:
        config = load_config_or_report(args)
        if config is None:
            return EXIT_FAILURE
        store = SnapshotStore(
            config.global_config.snapshot_root, config.global_config.timestamp_format
        )
        if target:
            snapshot_dir = store.root / target
            if not snapshot_dir.is_dir():
                logger.error("No snapshot named %s in %s", target, store.root)
                return EXIT_FAILURE
        else:
            latest = store.latest_complete()
            if latest is None:
                logger.error("No finalized snapshot in %s", store.root)
                return EXIT_FAILURE
            snapshot_dir = latest.path

    report = verify_snapshot(snapshot_dir)

    print(f"Verified: {report.location}")
    print(f"  Repositories: {report.total}")
    print(f"  Passed: {report.passed}")
    print(f"  Failed: {report.failed}")
    for result in report.results:
        if result.passed:
            continue
        print(f"  {result.repository}: {result.message}")
        for missing in result.missing:
            print(f"    missing {missing}")
    for error in report.errors:
        print(f"  Error: {error}")
    print(f"  Duration: {report.duration:.1f}s")

    return EXIT_OK if report.ok else EXIT_FAILURE
