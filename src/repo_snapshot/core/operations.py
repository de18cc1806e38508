"""Core backup operation: one consistent, incremental snapshot per run.

    check transport -> pick reuse reference -> create snapshot
      -> suspend compaction -> phases 1..5 -> resume compaction
      -> finalize snapshot
    with the log-segment backup running alongside the phases.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .. import __util__
from ..config import Config
from ..sshutil.master import SSHMasterManager
from ..sshutil.shell import CommandError, LocalShell, RemoteShell, Shell
from ..transaction import log_transaction
from .gc import CommandGCControl, GCControl, GCSuspensionCoordinator
from .interrupts import InterruptHandler
from .linker import resolve_reference
from .phases import PhaseResult, PhaseSequencer, build_phases
from .segments import CommandSegmentSource, SegmentReport, SegmentSource, backup_segments
from .store import REPOSITORIES_DIR, Snapshot, SnapshotStore
from .transfer import LocalTransfer, RsyncTransfer, TransferExecutor

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Collaborators of a run, built from configuration or injected."""

    shell: Shell
    executor: TransferExecutor
    gc_control: GCControl
    segment_source: Optional[SegmentSource] = None
    master: Optional[SSHMasterManager] = None

    def close(self) -> None:
        if self.master is not None:
            self.master.stop_master()


@dataclass
class RunResult:
    """Outcome of a successful run."""

    snapshot: Snapshot
    phases: list[PhaseResult] = field(default_factory=list)
    segments: Optional[SegmentReport] = None
    reference: Optional[Path] = None
    duration_seconds: float = 0.0

    @property
    def files_transferred(self) -> int:
        return sum(p.stats.files_transferred for p in self.phases)

    @property
    def files_linked(self) -> int:
        return sum(p.stats.files_linked for p in self.phases)

    @property
    def bytes_transferred(self) -> int:
        return sum(p.stats.bytes_transferred for p in self.phases)


def build_components(config: Config, audit_log: bool = True) -> Components:
    """Wire shell, executor, compaction control and log source for ``config``."""
    source = config.source
    master = None
    if source.is_remote:
        master = SSHMasterManager(
            source.host,
            username=source.user,
            port=source.port,
            identity_file=source.ssh_key,
        )
        shell: Shell = RemoteShell(master)
        executor: TransferExecutor = RsyncTransfer(
            host=source.host,
            user=source.user,
            ssh_command=master.rsync_ssh_command(),
            rsync_path=source.rsync_path,
        )
    else:
        shell = LocalShell()
        executor = LocalTransfer()

    segment_source = None
    if audit_log and config.audit_log.enabled:
        segment_source = CommandSegmentSource(shell, config.audit_log)

    return Components(
        shell=shell,
        executor=executor,
        gc_control=CommandGCControl(shell, config.gc),
        segment_source=segment_source,
        master=master,
    )


def _collect_segments(future: Optional[Future]) -> Optional[SegmentReport]:
    if future is None:
        return None
    try:
        return future.result()
    except (__util__.TransportUnavailable, CommandError, OSError, ValueError) as e:
        logger.error("Log-segment backup failed: %s", e)
        return SegmentReport(error=str(e))


def run_backup(
    config: Config,
    components: Components,
    interrupts: Optional[InterruptHandler] = None,
) -> RunResult:
    """Take one snapshot of the source described by ``config``.

    Raises:
        TransportUnavailable: Source unreachable; compaction was not touched
        GCSuspendFailed: Compaction could not be suspended; no phase ran
        PhaseTransferFailed: A phase failed; compaction was resumed
        RunInterrupted: Stopped by the operator; compaction was resumed
        GCResumeFailed: Phases succeeded but compaction could not be resumed
    """
    if interrupts is None:
        interrupts = InterruptHandler()
    gconf = config.global_config
    host = config.source.host or "localhost"
    store = SnapshotStore(gconf.snapshot_root, gconf.timestamp_format)

    with store.lock():
        logger.info("Checking connection to %s", host)
        components.shell.check()

        if not gconf.keep_incomplete:
            store.prune_incomplete()

        previous = store.latest_complete()
        reference = resolve_reference(previous, REPOSITORIES_DIR)
        snapshot = store.create()

        start = time.monotonic()
        log_transaction(
            action="run",
            status="started",
            snapshot=snapshot.name,
            source=f"{host}:{config.source.repositories_path}",
            destination=str(snapshot.path),
            details={"reference": previous.name if reference and previous else None},
        )
        try:
            phases, segments = _run_protocol(
                config, components, interrupts, host, snapshot, previous, reference
            )
        except BaseException as e:
            log_transaction(
                action="run",
                status="failed",
                snapshot=snapshot.name,
                duration_seconds=time.monotonic() - start,
                error=str(e) or type(e).__name__,
            )
            logger.error("Snapshot %s was not finalized", snapshot.path)
            raise

        duration = time.monotonic() - start
        result = RunResult(
            snapshot=snapshot,
            phases=phases,
            segments=segments,
            reference=reference,
            duration_seconds=duration,
        )
        store.finalize(
            snapshot,
            {
                "source": f"{host}:{config.source.repositories_path}",
                "reference": previous.name if reference and previous else None,
                "duration_seconds": round(duration, 3),
                "phases": [p.as_dict() for p in phases],
                "audit_log": segments.as_dict() if segments else None,
            },
        )
        log_transaction(
            action="run",
            status="completed",
            snapshot=snapshot.name,
            files=result.files_transferred,
            size_bytes=result.bytes_transferred,
            duration_seconds=duration,
        )
        return result


def _run_protocol(
    config: Config,
    components: Components,
    interrupts: InterruptHandler,
    host: str,
    snapshot: Snapshot,
    previous: Optional[Snapshot],
    reference: Optional[Path],
) -> tuple[list[PhaseResult], Optional[SegmentReport]]:
    coordinator = GCSuspensionCoordinator(
        components.gc_control,
        wait_timeout=config.gc.wait_timeout,
        poll_interval=config.gc.poll_interval,
        interrupts=interrupts,
    )
    sequencer = PhaseSequencer(
        components.executor,
        build_phases(config.source.cache_dirs),
        interrupts=interrupts,
        compress=config.global_config.compress,
        snapshot_name=snapshot.name,
    )

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit-log") as pool:
        segment_future = None
        if components.segment_source is not None:
            previous_segments = None
            previous_period = None
            if previous is not None and previous.finalized:
                previous_segments = previous.audit_log_dir
                previous_period = (previous.info().get("audit_log") or {}).get("current_period")
            segment_future = pool.submit(
                backup_segments,
                components.segment_source,
                snapshot.audit_log_dir,
                previous_segments,
                config.audit_log.parallel_fetches,
                interrupts.requested,
                previous_period or None,
            )

        try:
            with coordinator.suspended(host):
                logger.info(__util__.log_heading(f"Snapshot {snapshot.name}"))
                phases = sequencer.run_all(
                    config.source.repositories_path, snapshot.repositories_dir, reference
                )
        except BaseException:
            # Remaining segments are skipped once the run is lost
            interrupts.request()
            raise

        segments = _collect_segments(segment_future)
    interrupts.check()
    return phases, segments

