# pyright: standard

"""repo-snapshot: repo_snapshot/__logger__.py
A common rich logger shared by all commands.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

# Initialize basic console and handler
cons = Console(stderr=True)
rich_handler = RichHandler(console=cons, show_path=False)
# Create a logger directly
logger = logging.Logger("repo-snapshot", logging.INFO)

FILE_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def create_logger(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Route the package logger and the root logger through rich.

    An optional plain-text ``log_file`` receives the same records.
    """
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console(stderr=True)
    rich_handler = RichHandler(console=cons, show_path=False)

    handlers: list[logging.Handler] = [rich_handler]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        handlers.append(file_handler)

    logger.handlers.clear()
    logger.propagate = False
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)

    logging.basicConfig(
        format="%(message)s",
        datefmt="%H:%M:%S",
        level=level,
        handlers=handlers,
        force=True,
    )
