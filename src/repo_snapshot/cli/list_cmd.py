"""List command: show snapshots in the store."""

import argparse
import json
import logging

from rich.console import Console
from rich.table import Table

from ..__logger__ import create_logger
from ..core.store import SnapshotStore
from .common import EXIT_FAILURE, EXIT_OK, get_log_level, load_config_or_report

logger = logging.getLogger(__name__)


def execute_list(args: argparse.Namespace) -> int:
    """Execute the list command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    config = load_config_or_report(args)
    if config is None:
        return EXIT_FAILURE

    store = SnapshotStore(config.global_config.snapshot_root, config.global_config.timestamp_format)
    snapshots = store.list_snapshots()
    current = store.current()

    if getattr(args, "json", False):
        print(
            json.dumps(
                [
                    {
                        "name": s.name,
                        "path": str(s.path),
                        "finalized": s.finalized,
                        "current": current is not None and s.name == current.name,
                        "info": s.info(),
                    }
                    for s in snapshots
                ],
                indent=2,
            )
        )
        return EXIT_OK

    if not snapshots:
        print(f"No snapshots in {store.root}")
        return EXIT_OK

    table = Table(title=f"Snapshots in {store.root}")
    table.add_column("Name")
    table.add_column("State")
    table.add_column("Files", justify="right")
    table.add_column("Reused", justify="right")
    table.add_column("Reference")

    for snapshot in snapshots:
        info = snapshot.info()
        phases = info.get("phases", [])
        state = "finalized" if snapshot.finalized else "incomplete"
        if current is not None and snapshot.name == current.name:
            state += " (current)"
        table.add_row(
            snapshot.name,
            state,
            str(sum(p.get("files_transferred", 0) for p in phases)) if phases else "-",
            str(sum(p.get("files_linked", 0) for p in phases)) if phases else "-",
            info.get("reference") or "-",
        )

    Console().print(table)
    return EXIT_OK
