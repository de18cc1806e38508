"""Transfer phases and the sequencer that runs them in order.

Every phase is a full pass over the repository namespace with its own rule
set. The order matters on a live source:

1. auxiliary files: config and metadata the later phases rely on
2. packed refs: before loose refs, which override them per ref name
3. refs and reflogs: before objects, so every object they point to is
   still present when phase 4 runs (compaction is suspended)
4. objects and packs: the bulk of the data, already compressed
5. special stores: ``__name__`` directories except pure caches, and ``/info``
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .. import __util__
from ..__util__ import PhaseTransferFailed
from ..config.schema import DEFAULT_CACHE_DIRS
from ..transaction import log_transaction
from .interrupts import InterruptHandler
from .layout import DESCENT_GLOBS, INFO_DIR, LOST_FOUND, REPOSITORY_GLOBS, SPECIAL_GLOB
from .rules import RuleSet
from .transfer import TransferError, TransferExecutor, TransferStats

logger = logging.getLogger(__name__)

TEMP_OBJECT_PREFIX = "tmp_"


@dataclass
class Phase:
    """One transfer pass with a fixed rule set."""

    name: str
    description: str
    rules: RuleSet
    compress: bool = True


@dataclass
class PhaseResult:
    """Outcome of one successful phase."""

    name: str
    stats: TransferStats
    duration_seconds: float = 0.0

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "duration_seconds": round(self.duration_seconds, 3),
            **self.stats.as_dict(),
        }


def _repository_rules(name: str) -> RuleSet:
    """Rules shared by the repository phases: skip specials, allow descent."""
    return (
        RuleSet(name=name)
        .exclude(f"{SPECIAL_GLOB}/", f"/{INFO_DIR}/")
        .include(*DESCENT_GLOBS)
    )


def auxiliary_rules() -> RuleSet:
    rules = _repository_rules("auxiliary")
    for repo in REPOSITORY_GLOBS:
        rules.include(f"{repo}/")
        rules.exclude(
            f"{repo}/objects",
            f"{repo}/refs",
            f"{repo}/packed-refs",
            f"{repo}/logs",
            f"{repo}/info/{LOST_FOUND}",
        )
        rules.include(f"{repo}/**")
    return rules


def packed_refs_rules() -> RuleSet:
    rules = _repository_rules("packed-refs")
    for repo in REPOSITORY_GLOBS:
        rules.include(f"{repo}/", f"{repo}/packed-refs")
    return rules


def refs_rules() -> RuleSet:
    rules = _repository_rules("refs")
    for repo in REPOSITORY_GLOBS:
        rules.include(f"{repo}/", f"{repo}/refs/***", f"{repo}/logs/***")
    return rules


def objects_rules() -> RuleSet:
    rules = _repository_rules("objects")
    for repo in REPOSITORY_GLOBS:
        rules.include(f"{repo}/")
        rules.exclude(
            f"{repo}/objects/{TEMP_OBJECT_PREFIX}*",
            f"{repo}/objects/**/{TEMP_OBJECT_PREFIX}*",
        )
        rules.include(f"{repo}/objects/***")
    return rules


def special_rules(cache_dirs: Iterable[str] = DEFAULT_CACHE_DIRS) -> RuleSet:
    rules = RuleSet(name="special")
    rules.exclude(*(f"/{name}/***" for name in cache_dirs))
    rules.include(f"{SPECIAL_GLOB}/***")
    rules.exclude(f"/{INFO_DIR}/{LOST_FOUND}/***")
    rules.include(f"/{INFO_DIR}/***")
    return rules


def build_phases(cache_dirs: Iterable[str] = DEFAULT_CACHE_DIRS) -> list[Phase]:
    """The five phases in the order they must run."""
    return [
        Phase("auxiliary", "Repository metadata and auxiliary files", auxiliary_rules()),
        Phase("packed-refs", "Packed refs", packed_refs_rules()),
        Phase("refs", "Loose refs and reflogs", refs_rules()),
        Phase("objects", "Objects and packs", objects_rules(), compress=False),
        Phase("special", "Special stores and /info", special_rules(cache_dirs)),
    ]


@dataclass
class PhaseSequencer:
    """Runs the phases strictly one after another.

    A failing phase aborts the sequence; an interrupt request stops it before
    the next phase starts.
    """

    executor: TransferExecutor
    phases: Sequence[Phase] = field(default_factory=build_phases)
    interrupts: Optional[InterruptHandler] = None
    compress: bool = True
    snapshot_name: str = ""

    def run_all(
        self,
        remote_root: str | Path,
        local_root: str | Path,
        reference: Optional[Path] = None,
    ) -> list[PhaseResult]:
        results = []
        total = len(self.phases)
        for number, phase in enumerate(self.phases, 1):
            if self.interrupts is not None:
                self.interrupts.check()
            results.append(
                self._run_phase(number, total, phase, remote_root, local_root, reference)
            )
        # catches a request made during the last phase
        if self.interrupts is not None:
            self.interrupts.check()
        return results

    def _run_phase(
        self,
        number: int,
        total: int,
        phase: Phase,
        remote_root: str | Path,
        local_root: str | Path,
        reference: Optional[Path],
    ) -> PhaseResult:
        compress = self.compress and phase.compress
        logger.info(__util__.log_heading(f"Phase {number}/{total}: {phase.description}"))
        logger.debug(
            "Phase %s: %d rules, compress=%s, reference=%s",
            phase.name,
            len(phase.rules),
            compress,
            reference,
        )
        log_transaction(action="phase", status="started", snapshot=self.snapshot_name, phase=phase.name)

        start = time.monotonic()
        try:
            stats = self.executor.transfer(
                phase.rules, remote_root, local_root, reference=reference, compress=compress
            )
        except TransferError as e:
            duration = time.monotonic() - start
            log_transaction(
                action="phase",
                status="failed",
                snapshot=self.snapshot_name,
                phase=phase.name,
                duration_seconds=duration,
                error=str(e),
            )
            raise PhaseTransferFailed(phase.name, str(e)) from e

        duration = time.monotonic() - start
        logger.info(
            "Phase %s done: %d files (%s) transferred, %d reused in %.1fs",
            phase.name,
            stats.files_transferred,
            __util__.human_bytes(stats.bytes_transferred),
            stats.files_linked,
            duration,
        )
        log_transaction(
            action="phase",
            status="completed",
            snapshot=self.snapshot_name,
            phase=phase.name,
            files=stats.files_transferred,
            size_bytes=stats.bytes_transferred,
            duration_seconds=duration,
        )
        return PhaseResult(phase.name, stats, duration)
