"""Tests for suspension of background compaction."""

import signal

import pytest

from conftest import FakeShell, RecordingGC
from repo_snapshot.__util__ import GCResumeFailed, GCSuspendFailed
from repo_snapshot.config import GCConfig
from repo_snapshot.core.gc import CommandGCControl, GCSuspensionCoordinator
from repo_snapshot.core.interrupts import InterruptHandler


class FakeClock:
    """Monotonic clock advanced only by sleeping."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_coordinator(control, wait_timeout=30.0, poll_interval=1.0, interrupts=None):
    clock = FakeClock()
    coordinator = GCSuspensionCoordinator(
        control,
        wait_timeout=wait_timeout,
        poll_interval=poll_interval,
        interrupts=interrupts,
        clock=clock,
        sleep=clock.sleep,
    )
    return coordinator, clock


class TestSuspendedContext:
    """Tests for the suspend/resume bracket."""

    def test_normal_exit_resumes_once(self):
        """Test suspend, idle check and exactly one resume."""
        gc = RecordingGC()
        coordinator, _ = make_coordinator(gc)

        with coordinator.suspended("git.example.com") as suspension:
            assert suspension.active
            assert gc.calls == ["suspend", "busy?"]

        assert not suspension.active
        assert gc.calls == ["suspend", "busy?", "resume"]

    def test_error_inside_resumes_once(self):
        """Test an error in the body still resumes, then propagates."""
        gc = RecordingGC()
        coordinator, _ = make_coordinator(gc)

        with pytest.raises(RuntimeError, match="phase failed"):
            with coordinator.suspended("git.example.com"):
                raise RuntimeError("phase failed")

        assert gc.calls.count("resume") == 1

    def test_keyboard_interrupt_inside_resumes_once(self):
        """Test an operator abort still resumes."""
        gc = RecordingGC()
        coordinator, _ = make_coordinator(gc)

        with pytest.raises(KeyboardInterrupt):
            with coordinator.suspended("git.example.com"):
                raise KeyboardInterrupt

        assert gc.calls.count("resume") == 1

    def test_explicit_end_inside_is_not_repeated(self):
        """Test ending early makes the exit a no-op."""
        gc = RecordingGC()
        coordinator, _ = make_coordinator(gc)

        with coordinator.suspended("git.example.com") as suspension:
            suspension.end()
            suspension.end()

        assert gc.calls.count("resume") == 1

    def test_suspend_failure_issues_no_resume(self):
        """Test a failed suspend raises and never resumes."""
        gc = RecordingGC(fail_suspend=True)
        coordinator, _ = make_coordinator(gc)
        body_ran = False

        with pytest.raises(GCSuspendFailed, match="suspend refused"):
            with coordinator.suspended("git.example.com"):
                body_ran = True

        assert not body_ran
        assert gc.calls == ["suspend"]

    def test_resume_failure_after_success_raises(self):
        """Test a failed resume fails an otherwise successful run."""
        gc = RecordingGC(fail_resume=True)
        coordinator, _ = make_coordinator(gc)

        with pytest.raises(GCResumeFailed):
            with coordinator.suspended("git.example.com"):
                pass

        assert gc.calls.count("resume") == 1

    def test_resume_failure_does_not_mask_error(self):
        """Test the body's error wins over a failed resume."""
        gc = RecordingGC(fail_resume=True)
        coordinator, _ = make_coordinator(gc)

        with pytest.raises(ValueError, match="original"):
            with coordinator.suspended("git.example.com"):
                raise ValueError("original")

        assert gc.calls.count("resume") == 1

    def test_resume_is_shielded_from_second_interrupt(self):
        """Test a repeated signal during resume does not abort it."""
        interrupts = InterruptHandler()

        class SignalDuringResume(RecordingGC):
            def resume(self, host):
                interrupts._handle(signal.SIGINT, None)
                interrupts._handle(signal.SIGINT, None)
                super().resume(host)

        gc = SignalDuringResume()
        coordinator, _ = make_coordinator(gc, interrupts=interrupts)

        with coordinator.suspended("git.example.com"):
            pass

        assert gc.calls[-1] == "resume"
        assert interrupts.requested.is_set()


class TestWaitForIdle:
    """Tests for the best-effort wait on in-flight compaction."""

    def test_waits_until_idle(self):
        """Test polling continues until compaction finishes."""
        gc = RecordingGC(busy=[True, True, False])
        coordinator, clock = make_coordinator(gc, poll_interval=2.0)

        with coordinator.suspended("git.example.com"):
            pass

        assert gc.calls == ["suspend", "busy?", "busy?", "busy?", "resume"]
        assert clock.sleeps == [2.0, 2.0]

    def test_proceeds_after_timeout(self):
        """Test the run proceeds when compaction outlasts the deadline."""
        gc = RecordingGC(busy=[True] * 100)
        coordinator, clock = make_coordinator(gc, wait_timeout=5.0, poll_interval=1.0)

        with coordinator.suspended("git.example.com") as suspension:
            assert suspension.active

        assert clock.now == 5.0
        assert gc.calls.count("busy?") == 6
        assert gc.calls[-1] == "resume"

    def test_zero_timeout_skips_wait(self):
        """Test no busy check is made when waiting is disabled."""
        gc = RecordingGC(busy=[True])
        coordinator, _ = make_coordinator(gc, wait_timeout=0)

        with coordinator.suspended("git.example.com"):
            pass

        assert gc.calls == ["suspend", "resume"]

    def test_busy_check_failure_proceeds(self):
        """Test an unusable busy check does not block the run."""

        class BrokenBusyCheck(RecordingGC):
            def compaction_running(self, host):
                raise RuntimeError("pgrep missing")

        gc = BrokenBusyCheck()
        coordinator, _ = make_coordinator(gc)

        with coordinator.suspended("git.example.com"):
            pass

        assert gc.calls == ["suspend", "resume"]

    def test_interrupt_during_wait_resumes(self):
        """Test an abort while waiting still resumes compaction."""
        gc = RecordingGC(busy=[True] * 10)
        coordinator, _ = make_coordinator(gc)

        def abort(seconds):
            raise KeyboardInterrupt

        coordinator._sleep = abort

        with pytest.raises(KeyboardInterrupt):
            with coordinator.suspended("git.example.com"):
                pytest.fail("body must not run")

        assert gc.calls == ["suspend", "busy?", "resume"]


class TestCommandGCControl:
    """Tests for shell-command compaction control."""

    def test_commands(self):
        """Test configured commands are run on the shell."""
        config = GCConfig(
            suspend_command="gc-off", resume_command="gc-on", busy_command="gc-busy"
        )
        shell = FakeShell(outputs={"gc-busy": "4242 git gc\n"})
        control = CommandGCControl(shell, config)

        control.suspend("host")
        assert control.compaction_running("host") is True
        control.resume("host")

        assert shell.commands == ["gc-off", "gc-busy", "gc-on"]

    def test_idle_when_no_output(self):
        """Test empty busy-command output means idle."""
        control = CommandGCControl(FakeShell(), GCConfig(busy_command="gc-busy"))
        assert control.compaction_running("host") is False
