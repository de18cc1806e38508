"""CLI dispatcher: argument parsing and routing to command handlers."""

import argparse
import sys
from typing import Callable

from .common import EXIT_FAILURE, EXIT_OK, add_verbosity_args


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="repo-snapshot",
        description="Consistent, incremental snapshots of a git repository forest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Take one snapshot",
        description="Suspend compaction, run the transfer phases and back up log segments",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the phases and their filter rules without transferring",
    )
    run_parser.add_argument(
        "--no-audit-log",
        action="store_true",
        help="Skip the log-segment backup for this run",
    )

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="Show snapshots",
        description="List snapshots in the store, newest last",
    )
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )

    # verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Check referential closure of a snapshot",
        description="Check every ref and reflog target of every repository is present",
    )
    verify_parser.add_argument(
        "snapshot",
        nargs="?",
        metavar="SNAPSHOT",
        help="Snapshot name or directory (default: latest finalized)",
    )

    # history command
    history_parser = subparsers.add_parser(
        "history",
        help="Show recent transaction history",
        description="Show records from the transaction log",
    )
    history_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=20,
        metavar="N",
        help="Number of records to show (default: 20)",
    )

    # config command with subcommands
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Validate or initialize configuration",
    )
    config_subs = config_parser.add_subparsers(dest="config_action")

    config_subs.add_parser(
        "validate",
        help="Validate configuration file",
    )

    init_parser = config_subs.add_parser(
        "init",
        help="Generate example configuration",
    )
    init_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )

    return parser


def run_subcommand(args: argparse.Namespace) -> int:
    """Run the specified subcommand.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    from .. import __version__

    if args.version:
        print(f"repo-snapshot {__version__}")
        return EXIT_OK

    if not args.command:
        print("No command specified. Use --help for usage information.")
        return EXIT_FAILURE

    handlers: dict[str, Callable] = {
        "run": cmd_run,
        "list": cmd_list,
        "verify": cmd_verify,
        "history": cmd_history,
        "config": cmd_config,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return EXIT_FAILURE


def cmd_run(args: argparse.Namespace) -> int:
    """Execute run command."""
    from .run import execute_run

    return execute_run(args)


def cmd_list(args: argparse.Namespace) -> int:
    """Execute list command."""
    from .list_cmd import execute_list

    return execute_list(args)


def cmd_verify(args: argparse.Namespace) -> int:
    """Execute verify command."""
    from .verify_cmd import execute_verify

    return execute_verify(args)


def cmd_history(args: argparse.Namespace) -> int:
    """Execute history command."""
    from .history_cmd import execute_history

    return execute_history(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the repo-snapshot CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    args = parser.parse_args(argv)

    return run_subcommand(args)
