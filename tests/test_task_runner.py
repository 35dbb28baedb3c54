"""
Tests for the locking task runner.

These run real shell commands in temporary directories; alerts go to a
recording notifier.
"""

import os
import signal
import subprocess
import sys
import threading
import time

import pytest
from conftest import RecordingNotifier

from opskit.config import RunnerConfig
from opskit.runner.lock import AlreadyHeld, LockManager
from opskit.runner.task_runner import EXIT_FAILURE, EXIT_SUCCESS, TaskRunner


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def lock_dir(tmp_path):
    path = tmp_path / "locks"
    path.mkdir()
    return path


@pytest.fixture
def make_runner(workdir, lock_dir, notifier):
    """Build a TaskRunner for a command with sensible test defaults."""
    def _make(command, **overrides):
        options = {
            'name': "Nightly Sync",
            'workdir': str(workdir),
            'command': command,
            'lock_dir': str(lock_dir),
            'email_recipients': ("ops@example.com", "dba@example.com"),
            'sms_recipients': ("5551234567@sms.example.net",),
        }
        clock = overrides.pop('clock', time.time)
        options.update(overrides)
        return TaskRunner(RunnerConfig(**options), notifier, clock=clock, handle_signals=False)
    return _make


def debug_log_text(workdir):
    logs = sorted((workdir / "logs").glob("NightlySync.[0-9]*.log"))
    assert logs, "daily debug log was not created"
    return logs[-1].read_text()


class TestSuccessfulRuns:
    """Runs whose stderr is empty after filtering."""

    def test_clean_command_exits_zero(self, make_runner, notifier, lock_dir, workdir):
        runner = make_runner("echo hello")

        assert runner.run() == EXIT_SUCCESS
        assert notifier.dispatch_count == 0
        assert not (lock_dir / "NightlySync.lock").exists()
        assert "hello" in debug_log_text(workdir)

    def test_ignored_warning_is_not_an_error(self, make_runner, notifier, workdir):
        """A benign unload notice on stderr does not fail the job."""
        runner = make_runner("echo 'warning: 3 rows unloaded.' >&2")

        assert runner.run() == EXIT_SUCCESS
        assert notifier.dispatch_count == 0
        assert not (workdir / "logs" / "NightlySync.critical.log").exists()

    def test_nonzero_exit_without_stderr_succeeds(self, make_runner, notifier):
        runner = make_runner("exit 3")

        assert runner.run() == EXIT_SUCCESS
        assert notifier.dispatch_count == 0

    def test_command_runs_in_workdir(self, make_runner, workdir):
        runner = make_runner("pwd > where.txt")

        runner.run()

        assert (workdir / "where.txt").read_text().strip() == str(workdir)

    def test_error_buffer_removed(self, make_runner, workdir):
        make_runner("echo done").run()

        assert list((workdir / "logs").glob("*.err")) == []

    def test_release_logged_as_normal(self, make_runner, workdir):
        make_runner("true").run()

        assert "signalType=normal" in debug_log_text(workdir)


class TestFailingRuns:
    """Runs that leave real error output."""

    def test_fatal_error_alerts_everyone(self, make_runner, notifier, workdir, lock_dir):
        runner = make_runner("echo 'FATAL: connection refused' >&2; exit 2")

        assert runner.run() == EXIT_FAILURE

        assert [e[0] for e in notifier.emails] == ["ops@example.com", "dba@example.com"]
        assert [s[0] for s in notifier.sms] == ["5551234567@sms.example.net"]
        assert "FATAL: connection refused" in notifier.emails[0][2]
        assert "=== " in notifier.emails[0][2]
        assert (workdir / "logs" / "NightlySync.critical.log").read_text() == ""
        assert (workdir / "logs" / "NightlySync.lastsent").exists()
        assert not (lock_dir / "NightlySync.lock").exists()

    def test_repeated_failure_within_gap_is_buffered(self, make_runner, notifier, workdir):
        start = time.time()
        command = "echo 'ERROR: disk full' >&2"

        first = make_runner(command, clock=lambda: start).run()
        second = make_runner(command, clock=lambda: start + 10 * 60).run()

        assert first == second == EXIT_FAILURE
        assert len(notifier.emails) == 2
        pending = (workdir / "logs" / "NightlySync.critical.log").read_text()
        assert pending.count("ERROR: disk full") == 1

    def test_failure_after_gap_sends_backlog(self, make_runner, notifier):
        start = time.time()
        command = "echo 'ERROR: disk full' >&2"

        make_runner(command, clock=lambda: start).run()
        make_runner(command, clock=lambda: start + 10 * 60).run()
        make_runner(command, clock=lambda: start + 61 * 60).run()

        assert len(notifier.emails) == 4
        assert notifier.emails[-1][2].count("ERROR: disk full") == 2

    def test_missing_workdir_is_environment_error(self, make_runner, notifier, tmp_path):
        runner = make_runner("true", workdir=str(tmp_path / "missing"))

        assert runner.run() == EXIT_FAILURE
        assert "Working directory does not exist" in notifier.emails[0][2]

    def test_kill_after_max_terminates_child(self, make_runner, notifier, workdir, lock_dir):
        runner = make_runner("sleep 5", max_run_minutes=0.01, kill_after_max=True)

        started = time.monotonic()
        assert runner.run() == EXIT_FAILURE
        assert time.monotonic() - started < 4

        assert "maximum run time" in notifier.emails[0][2]
        assert not (lock_dir / "NightlySync.lock").exists()
        assert list((workdir / "logs").glob("*.err")) == []


class TestLockContention:
    """Invocations that find the lock already held."""

    def _hold_lock(self, lock_dir, age_minutes, pid=None):
        lock_path = lock_dir / "NightlySync.lock"
        lock_path.mkdir()
        if pid is not None:
            (lock_path / str(pid)).write_text("sleep 3600\n")
        stamp = time.time() - age_minutes * 60
        os.utime(lock_path, (stamp, stamp))
        return lock_path

    def test_young_lock_exits_quietly(self, make_runner, notifier, lock_dir, workdir):
        lock_path = self._hold_lock(lock_dir, age_minutes=5, pid=4242)

        assert make_runner("touch ran").run() == EXIT_SUCCESS
        assert notifier.dispatch_count == 0
        assert lock_path.is_dir()
        assert not (workdir / "ran").exists()

    def test_stale_lock_escalates(self, make_runner, notifier, lock_dir):
        lock_path = self._hold_lock(lock_dir, age_minutes=180, pid=4242)

        assert make_runner("true", max_run_minutes=60).run() == EXIT_FAILURE
        assert len(notifier.emails) == 2
        body = notifier.emails[0][2]
        assert "minutes old" in body
        assert "held by pid 4242" in body
        assert lock_path.is_dir()

    def test_stale_lock_without_marker(self, make_runner, notifier, lock_dir):
        self._hold_lock(lock_dir, age_minutes=180)

        assert make_runner("true").run() == EXIT_FAILURE
        assert "instance marker missing" in notifier.emails[0][2]


class TestInterruption:
    """Termination signals received while the child runs."""

    def test_interrupt_releases_lock_without_alert(self, make_runner, notifier, lock_dir, workdir):
        runner = make_runner("sleep 5")
        timer = threading.Timer(1.0, runner._handle_signal, args=(signal.SIGTERM, None))

        timer.start()
        started = time.monotonic()
        try:
            code = runner.run()
        finally:
            timer.cancel()

        assert code == EXIT_SUCCESS
        assert time.monotonic() - started < 4.5
        assert notifier.dispatch_count == 0
        assert not (lock_dir / "NightlySync.lock").exists()
        assert "signalType=interrupt" in debug_log_text(workdir)

    def test_sigterm_to_cli_process_releases_lock(self, workdir, lock_dir):
        """A real SIGTERM reaches the installed handlers and takes the interrupt path."""
        proc = subprocess.Popen([
            sys.executable, '-m', 'opskit.main', 'lockrun',
            '-n', 'Nightly Sync', '-d', str(workdir), '-c', 'sleep 30',
            '--lock-dir', str(lock_dir),
        ])
        lock_path = lock_dir / "NightlySync.lock"
        try:
            deadline = time.monotonic() + 15
            while not (lock_path.is_dir() and any(lock_path.iterdir())):
                assert time.monotonic() < deadline, "lock was never acquired"
                assert proc.poll() is None, "lockrun exited before acquiring the lock"
                time.sleep(0.05)
            time.sleep(0.5)

            proc.send_signal(signal.SIGTERM)
            code = proc.wait(timeout=15)
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

        assert code == EXIT_SUCCESS
        assert not lock_path.exists()
        assert "signalType=interrupt" in debug_log_text(workdir)


class SecondRunNotifier(RecordingNotifier):
    """Starts another invocation of the same job while the first one is alerting."""

    def __init__(self, start_second_run):
        super().__init__()
        self.start_second_run = start_second_run
        self.lock_status = None
        self.second_exit = None

    def send_email(self, recipient, subject, body):
        if self.second_exit is None:
            self.lock_status, self.second_exit = self.start_second_run()
        super().send_email(recipient, subject, body)


class TestAlertSerialization:
    """The lock stays held until the alert for a failed run has gone out."""

    def test_next_run_waits_for_alert(self, workdir, lock_dir):
        start = time.time()
        command = "echo 'ERROR: disk full' >&2"
        config = RunnerConfig(
            name="Nightly Sync",
            workdir=str(workdir),
            command=command,
            lock_dir=str(lock_dir),
            email_recipients=("ops@example.com",),
        )
        second_notifier = RecordingNotifier()

        def start_second_run():
            status = LockManager(lock_dir).try_acquire("NightlySync", now=start + 60)
            second = TaskRunner(config, second_notifier, clock=lambda: start + 60, handle_signals=False)
            return status, second.run()

        notifier = SecondRunNotifier(start_second_run)
        first = TaskRunner(config, notifier, clock=lambda: start, handle_signals=False)

        assert first.run() == EXIT_FAILURE

        assert isinstance(notifier.lock_status, AlreadyHeld)
        assert notifier.second_exit == EXIT_SUCCESS
        assert len(notifier.emails) == 1
        assert second_notifier.dispatch_count == 0
        assert not (lock_dir / "NightlySync.lock").exists()
