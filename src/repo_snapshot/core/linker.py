"""Snapshot linker: reuse of unchanged entries from the previous snapshot.

Each entry of a phase is resolved to one of three actions:

- ``SKIP``: the phase's rules do not admit the entry
- ``REUSE``: the previous snapshot holds an identical regular file, so the
  new entry is a hard link to it
- ``COPY``: anything else, including every entry when there is no previous
  snapshot
"""

import logging
import os
import stat
from enum import Enum
from pathlib import Path
from typing import Optional

from .store import Snapshot

logger = logging.getLogger(__name__)


class EntryAction(Enum):
    """What to do with one entry of the source tree."""

    COPY = "copy-fresh"
    REUSE = "reuse-reference"
    SKIP = "skip"


def unchanged(source: os.stat_result, reference: os.stat_result) -> bool:
    """Quick check: same type, size, mtime (whole seconds) and permission bits."""
    return (
        stat.S_ISREG(source.st_mode)
        and stat.S_ISREG(reference.st_mode)
        and source.st_size == reference.st_size
        and int(source.st_mtime) == int(reference.st_mtime)
        and stat.S_IMODE(source.st_mode) == stat.S_IMODE(reference.st_mode)
    )


def plan_entry(
    included: bool,
    source: os.stat_result,
    reference: Optional[os.stat_result],
) -> EntryAction:
    """Decide how one entry is materialized in the new snapshot.

    Args:
        included: Verdict of the phase's rule set for the entry
        source: Stat of the entry on the source
        reference: Stat of the same path in the previous snapshot, if present

    Returns:
        The action for the entry. Reuse never overrides the rule verdict.
    """
    if not included:
        return EntryAction.SKIP
    if reference is not None and unchanged(source, reference):
        return EntryAction.REUSE
    return EntryAction.COPY


def resolve_reference(previous: Optional[Snapshot], subdir: str) -> Optional[Path]:
    """Return the reuse reference directory inside ``previous``, if usable.

    Only finalized snapshots qualify; an unfinalized one means a full copy.
    """
    if previous is None:
        logger.info("No previous snapshot, performing a full copy")
        return None
    if not previous.finalized:
        logger.warning("Ignoring unfinalized snapshot %s as reuse reference", previous.name)
        return None

    reference = previous.path / subdir
    if not reference.is_dir():
        logger.info("Previous snapshot %s has no %s, performing a full copy", previous.name, subdir)
        return None

    logger.info("Reusing unchanged files from snapshot %s", previous.name)
    return reference
