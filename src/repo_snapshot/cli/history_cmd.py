"""History command: show recent transaction log records."""

import argparse
import logging

from ..__logger__ import create_logger
from ..transaction import read_transaction_log
from .common import EXIT_FAILURE, EXIT_OK, get_log_level, load_config_or_report

logger = logging.getLogger(__name__)


def execute_history(args: argparse.Namespace) -> int:
    """Execute the history command."""
    create_logger(level=get_log_level(args))

    config = load_config_or_report(args)
    if config is None:
        return EXIT_FAILURE

    path = config.global_config.transaction_log
    if not path:
        print("Transaction log is disabled (global.transaction_log is not set)")
        return EXIT_OK

    records = read_transaction_log(path, limit=getattr(args, "limit", 20))
    if not records:
        print(f"No transactions recorded in {path}")
        return EXIT_OK

    for record in records:
        line = f"{record.get('timestamp', '?')[:19]}  {record.get('action', '?'):<6} {record.get('status', '?'):<10}"
        if record.get("phase"):
            line += f" phase={record['phase']}"
        if record.get("snapshot"):
            line += f" snapshot={record['snapshot']}"
        if record.get("duration_seconds") is not None:
            line += f" {record['duration_seconds']:.1f}s"
        if record.get("error"):
            line += f" error={record['error']}"
        print(line)

    return EXIT_OK
