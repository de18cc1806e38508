"""Run journal: one JSON record per line for runs and phases.

Disabled until :func:`set_transaction_log` is given a path.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_log_path: Optional[Path] = None
_lock = threading.Lock()


def set_transaction_log(path: Optional[str | Path]) -> None:
    """Set (or with None, disable) the journal file."""
    global _log_path
    if path is None:
        _log_path = None
        return
    _log_path = Path(path).expanduser()
    _log_path.parent.mkdir(parents=True, exist_ok=True)


def log_transaction(
    action: str,
    status: str,
    snapshot: Optional[str] = None,
    phase: Optional[str] = None,
    source: Optional[str] = None,
    destination: Optional[str] = None,
    files: Optional[int] = None,
    size_bytes: Optional[int] = None,
    duration_seconds: Optional[float] = None,
    error: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Append one record to the journal, if enabled."""
    path = _log_path
    if path is None:
        return

    record: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "pid": os.getpid(),
        "action": action,
        "status": status,
    }
    optional = {
        "snapshot": snapshot,
        "phase": phase,
        "source": source,
        "destination": destination,
        "files": files,
        "size_bytes": size_bytes,
        "duration_seconds": round(duration_seconds, 3) if duration_seconds is not None else None,
        "error": error,
        "details": details,
    }
    record.update({k: v for k, v in optional.items() if v is not None})

    try:
        with _lock, open(path, "a") as f:
            f.write(json.dumps(record) + "\n")
    except OSError as e:
        logger.warning("Could not write transaction log %s: %s", path, e)


def read_transaction_log(
    path: Optional[str | Path] = None, limit: Optional[int] = None
) -> list[dict[str, Any]]:
    """Read journal records, oldest first; corrupt lines are skipped."""
    log_path = Path(path) if path is not None else _log_path
    if log_path is None or not log_path.exists():
        return []

    records = []
    with open(log_path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping corrupt transaction record: %r", line[:80])

    if limit is not None:
        records = records[-limit:] if limit > 0 else []
    return records
