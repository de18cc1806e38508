"""Repository namespace layout.

Three repository layouts coexist under one root::

    flat       /<repo-id>/<repo-id>.git
    gist       /<s1>/<s2>/<s3>/gist/<gist-id>.git
    network    /<s1>/<s2>/<s3>/<network-id>/<network-id>.git

``s1``..``s3`` are two-hex-character shard directories derived from the MD5
digest of the identifier. Top-level ``__name__`` directories are special
asset stores and ``/info`` is the auxiliary non-repository directory.
"""

import hashlib
import re
from enum import Enum
from typing import Optional

SHARD_DEPTH = 3
GIST_BUCKET = "gist"
INFO_DIR = "info"
LOST_FOUND = "lost+found"

# Globs (relative to the namespace root) that match a repository directory.
# The networked glob covers the gist bucket as well.
FLAT_REPOSITORY_GLOB = "/*/*.git"
SHARDED_REPOSITORY_GLOB = "/??/??/??/*/*.git"
REPOSITORY_GLOBS = (FLAT_REPOSITORY_GLOB, SHARDED_REPOSITORY_GLOB)

# Directories that must be admitted for the walk to reach the repository dirs
DESCENT_GLOBS = ("/*/", "/??/??/", "/??/??/??/", "/??/??/??/*/")

SPECIAL_GLOB = "/__*__"

_SHARD = re.compile(r"^[0-9a-f]{2}$")
_SPECIAL = re.compile(r"^__.+__$")


class RepoLayout(Enum):
    """On-disk layout variant of a repository."""

    FLAT = "flat"
    GIST = "gist"
    NETWORK = "network"


def shard_parts(identifier: str | int) -> list[str]:
    """Return the three shard directory names for ``identifier``."""
    digest = hashlib.md5(str(identifier).encode()).hexdigest()
    return [digest[i : i + 2] for i in range(0, SHARD_DEPTH * 2, 2)]


def repository_path(
    identifier: str | int, layout: RepoLayout = RepoLayout.FLAT
) -> str:
    """Map a repository identifier to its path below the namespace root."""
    ident = str(identifier)
    if not ident or "/" in ident:
        raise ValueError(f"invalid repository identifier: {identifier!r}")

    if layout is RepoLayout.FLAT:
        return f"/{ident}/{ident}.git"

    shards = "/".join(shard_parts(ident))
    if layout is RepoLayout.GIST:
        return f"/{shards}/{GIST_BUCKET}/{ident}.git"
    return f"/{shards}/{ident}/{ident}.git"


def classify_path(path: str) -> Optional[tuple[RepoLayout, str]]:
    """Inverse of :func:`repository_path` for a repository directory.

    Returns ``(layout, identifier)`` or None if ``path`` is not a repository
    directory in any known layout.
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts or not parts[-1].endswith(".git"):
        return None
    name = parts[-1][: -len(".git")]

    if len(parts) == 2 and parts[0] == name and not _SPECIAL.match(name):
        return RepoLayout.FLAT, name

    if len(parts) == SHARD_DEPTH + 2 and all(
        _SHARD.match(p) for p in parts[:SHARD_DEPTH]
    ):
        bucket = parts[SHARD_DEPTH]
        if bucket == GIST_BUCKET:
            return RepoLayout.GIST, name
        if bucket == name:
            return RepoLayout.NETWORK, name

    return None


def is_special(name: str) -> bool:
    """Whether a top-level directory name is a special ``__name__`` store."""
    return bool(_SPECIAL.match(name))
