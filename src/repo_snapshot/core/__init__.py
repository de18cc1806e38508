"""Core snapshot protocol for repo-snapshot.

Rule sets and phases, compaction suspension, transfer executors, the
snapshot store and linker, and the log-segment backup.
"""

from .gc import GCSuspensionCoordinator
from .operations import Components, RunResult, build_components, run_backup
from .phases import PhaseSequencer, build_phases
from .rules import Decision, Rule, RuleSet
from .segments import backup_segments
from .store import Snapshot, SnapshotStore

__all__ = [
    "Components",
    "Decision",
    "GCSuspensionCoordinator",
    "PhaseSequencer",
    "Rule",
    "RuleSet",
    "RunResult",
    "Snapshot",
    "SnapshotStore",
    "backup_segments",
    "build_components",
    "build_phases",
    "run_backup",
]
