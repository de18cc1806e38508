"""Incremental backup of the time-segmented, append-only log store.

Every segment covers one calendar period (``YYYY-MM``). Segments of past
periods are immutable, so a copy in the previous snapshot is reused with a
hard link. The segment of the current period is still being appended to and
is always fetched again. The current period is read from the source host,
never from the local clock.
"""

import logging
import os
import re
import shlex
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional

from ..__util__ import SegmentFetchFailed
from ..config.schema import AuditLogConfig
from ..sshutil.shell import Shell

logger = logging.getLogger(__name__)

PERIOD_RE = re.compile(r"\d{4}-\d{2}")
PARTIAL_SUFFIX = ".partial"


class SegmentAction(Enum):
    REUSE = "reuse"
    FETCH = "fetch"
    SKIPPED = "skipped"


def segment_period(segment: str) -> Optional[str]:
    """The ``YYYY-MM`` period label of a segment, or None if it has none."""
    periods = PERIOD_RE.findall(segment)
    return periods[-1] if periods else None


def _valid_name(segment: str) -> bool:
    return bool(segment) and "/" not in segment and not segment.startswith(".")


class SegmentSource:
    """Remote listing endpoint of the log store."""

    def list_segments(self) -> list[str]:
        raise NotImplementedError

    def current_period(self) -> str:
        raise NotImplementedError

    def fetch(self, segment: str, out: BinaryIO) -> None:
        """Write the content of ``segment`` to ``out``."""
        raise NotImplementedError


class CommandSegmentSource(SegmentSource):
    """Log store accessed through shell commands on the source host."""

    def __init__(self, shell: Shell, config: AuditLogConfig) -> None:
        self.shell = shell
        self.config = config

    def list_segments(self) -> list[str]:
        output = self.shell.run(self.config.list_command)
        return [line.strip() for line in output.splitlines() if line.strip()]

    def current_period(self) -> str:
        period = self.shell.run(self.config.period_command).strip()
        if not PERIOD_RE.fullmatch(period):
            raise ValueError(f"unexpected period label from {self.shell.host}: {period!r}")
        return period

    def fetch(self, segment: str, out: BinaryIO) -> None:
        command = self.config.fetch_command.format(segment=shlex.quote(segment))
        with self.shell.stream(command) as stream:
            shutil.copyfileobj(stream, out)


@dataclass
class SegmentReport:
    """What happened to each segment of one run."""

    current_period: str = ""
    reused: list[str] = field(default_factory=list)
    fetched: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed and not self.skipped

    def as_dict(self) -> dict:
        return {
            "current_period": self.current_period,
            "reused": sorted(self.reused),
            "fetched": sorted(self.fetched),
            "skipped": sorted(self.skipped),
            "failed": dict(sorted(self.failed.items())),
            "error": self.error,
        }


def plan_segment(
    segment: str,
    current_period: str,
    previous_dir: Optional[Path],
    previous_period: Optional[str] = None,
) -> SegmentAction:
    """Reuse a closed segment with a local copy; fetch everything else.

    ``previous_period`` is the period that was open when ``previous_dir``
    was written. A copy of that period (or a later one) may be truncated and
    is fetched again.
    """
    period = segment_period(segment)
    if (
        previous_dir is not None
        and period is not None
        and period < current_period
        and (previous_period is None or period < previous_period)
        and (previous_dir / segment).is_file()
    ):
        return SegmentAction.REUSE
    return SegmentAction.FETCH


def _backup_one(
    source: SegmentSource,
    segment: str,
    current_period: str,
    dest_dir: Path,
    previous_dir: Optional[Path],
    previous_period: Optional[str],
    cancel: Optional[threading.Event],
) -> SegmentAction:
    if cancel is not None and cancel.is_set():
        return SegmentAction.SKIPPED
    if not _valid_name(segment):
        raise SegmentFetchFailed(segment, "invalid segment name")

    target = dest_dir / segment
    action = plan_segment(segment, current_period, previous_dir, previous_period)
    if action is SegmentAction.REUSE:
        assert previous_dir is not None
        try:
            os.link(previous_dir / segment, target)
            return action
        except OSError as e:
            logger.warning("Cannot link segment %s (%s), fetching it", segment, e)
            action = SegmentAction.FETCH

    partial = dest_dir / f"{segment}{PARTIAL_SUFFIX}"
    try:
        with open(partial, "wb") as out:
            source.fetch(segment, out)
        os.replace(partial, target)
    except Exception as e:
        partial.unlink(missing_ok=True)
        raise SegmentFetchFailed(segment, str(e)) from e
    return action


def backup_segments(
    source: SegmentSource,
    dest_dir: Path,
    previous_dir: Optional[Path] = None,
    max_workers: int = 4,
    cancel: Optional[threading.Event] = None,
    previous_period: Optional[str] = None,
) -> SegmentReport:
    """Back up every segment ``source`` lists into ``dest_dir``.

    A failing segment is recorded in the report and does not stop the others.
    Listing the segments or reading the current period may raise.
    """
    segments = source.list_segments()
    current = source.current_period()
    report = SegmentReport(current_period=current)
    dest_dir.mkdir(parents=True, exist_ok=True)
    if previous_dir is not None and not previous_dir.is_dir():
        previous_dir = None

    logger.info("Backing up %d log segments (open period %s)", len(segments), current)

    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="segment") as executor:
        futures = {
            executor.submit(
                _backup_one,
                source,
                segment,
                current,
                dest_dir,
                previous_dir,
                previous_period,
                cancel,
            ): segment
            for segment in segments
        }
        for future in as_completed(futures):
            segment = futures[future]
            try:
                action = future.result()
            except SegmentFetchFailed as e:
                logger.warning("Log segment failed: %s", e)
                report.failed[segment] = str(e)
                continue

            if action is SegmentAction.REUSE:
                report.reused.append(segment)
            elif action is SegmentAction.FETCH:
                report.fetched.append(segment)
            else:
                report.skipped.append(segment)
            logger.debug("Segment %s: %s", segment, action.value)

    logger.info(
        "Log segments: %d reused, %d fetched, %d failed, %d skipped",
        len(report.reused),
        len(report.fetched),
        len(report.failed),
        len(report.skipped),
    )
    return report
