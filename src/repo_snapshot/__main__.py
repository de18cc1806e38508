# pyright: standard

"""repo-snapshot: repo_snapshot/__main__.py.

Consistent, incremental snapshots of a git repository forest.
Requires Python >= 3.11, rsync and ssh for remote sources.
"""

import sys

from .cli import main as cli_main


def main() -> int:
    """Console script entry point."""
    return cli_main(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
