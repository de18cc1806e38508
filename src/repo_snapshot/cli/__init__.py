"""Command line interface for repo-snapshot."""

from .dispatcher import main

__all__ = ["main"]
