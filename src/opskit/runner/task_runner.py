"""
Locking task runner.

Composes the lock manager, command executor, error filter and alert throttle
into one invocation:

1. prepare the log directory, daily debug log and error buffer
2. try to acquire the job lock without blocking
3. winner: run the command, filter its stderr, report remaining errors,
   release the lock
4. loser: exit quietly while the lock is young, escalate once it is stale
"""

import logging
import os
import signal
import socket
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from opskit.config import RunnerConfig
from .command import CommandExecutor, CommandOutcome
from .errors import ErrorFilter
from .exceptions import EnvironmentSetupError
from .lock import AlreadyHeld, LockManager
from .notifier import Notifier
from .throttle import AlertOutcome, AlertStore, AlertThrottle

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

DEBUG_LOG_FORMAT = '%(asctime)s [%(process)d] %(levelname)s %(name)s: %(message)s'

# Records from every opskit module end up in the job's debug log
PACKAGE_LOGGER = 'opskit'


@dataclass
class RunState:
    """Per-invocation state, discarded when the process exits."""

    started_at: float
    debug_log: Optional[Path] = None
    error_buffer: Optional[Path] = None
    child_pid: Optional[int] = None
    interrupted_by: Optional[int] = None


class TaskRunner:
    """
    Single-host mutual-exclusion supervisor for one scheduled job.

    Args:
        config: Immutable configuration of this invocation
        notifier: Email/SMS delivery collaborator
        clock: Returns the current epoch time
        handle_signals: Install SIGINT/SIGTERM handlers for the whole invocation
    """

    HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(
        self,
        config: RunnerConfig,
        notifier: Notifier,
        clock: Callable[[], float] = time.time,
        handle_signals: bool = True,
    ):
        self.config = config
        self.notifier = notifier
        self.clock = clock
        self.handle_signals = handle_signals
        self.state = RunState(started_at=clock())
        self.lock_manager = LockManager(config.resolved_lock_dir)
        self.error_filter = ErrorFilter(config.ignore_patterns)
        self.throttle = AlertThrottle(
            store=AlertStore(config.resolved_log_dir, config.slug),
            notifier=notifier,
            job_name=config.name,
            email_recipients=config.email_recipients,
            sms_recipients=config.sms_recipients,
            gap_minutes=config.alert_gap_minutes,
        )
        self.executor: Optional[CommandExecutor] = None
        self._debug_handler: Optional[logging.Handler] = None
        self._previous_level: Optional[int] = None

    def run(self) -> int:
        """
        Execute one invocation of the job.

        Returns:
            Process exit code (EXIT_SUCCESS or EXIT_FAILURE)
        """
        try:
            self._prepare_environment()
        except EnvironmentSetupError as e:
            logger.error(f"Environment error for job '{self.config.name}': {e}")
            self._notify_environment_error(str(e))
            self._cleanup()
            return EXIT_FAILURE

        try:
            logger.info(f"Starting job '{self.config.name}' (slug {self.config.slug})")
            previous_handlers = self._install_signal_handlers()
            try:
                status = self.lock_manager.try_acquire(self.config.slug, now=self.clock())
                if isinstance(status, AlreadyHeld):
                    return self._handle_already_held(status)
                return self._run_locked()
            finally:
                self._restore_signal_handlers(previous_handlers)
        finally:
            self._cleanup()

    def _prepare_environment(self) -> None:
        config = self.config
        if not Path(config.workdir).is_dir():
            raise EnvironmentSetupError(f"Working directory does not exist: {config.workdir}")

        log_dir = config.resolved_log_dir
        day = datetime.fromtimestamp(self.state.started_at).strftime('%Y-%m-%d')
        self.state.debug_log = log_dir / f"{config.slug}.{day}.log"
        self.state.error_buffer = log_dir / f"{config.slug}.{os.getpid()}.err"

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            config.resolved_lock_dir.mkdir(parents=True, exist_ok=True)
            self.state.error_buffer.touch()
            handler = logging.FileHandler(self.state.debug_log, mode='a', encoding='utf-8')
        except OSError as e:
            raise EnvironmentSetupError(f"Cannot create working files in {log_dir}: {e}") from e

        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(DEBUG_LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        if package_logger.getEffectiveLevel() > logging.INFO:
            self._previous_level = package_logger.level
            package_logger.setLevel(logging.INFO)
        package_logger.addHandler(handler)
        self._debug_handler = handler

    def _run_locked(self) -> int:
        """Run the command and report its errors; the lock is held until both are done."""
        config = self.config
        lock_path = self.lock_manager.lock_path(config.slug)
        logger.info(f"Acquired lock {lock_path}")

        try:
            return self._supervise()
        finally:
            self.lock_manager.release(config.slug)
            signal_type = 'interrupt' if self.state.interrupted_by is not None else 'normal'
            logger.info(f"Released lock {lock_path} (signalType={signal_type})")

    def _supervise(self) -> int:
        config = self.config
        self.executor = CommandExecutor(self.state.debug_log, self.state.error_buffer)
        if self.state.interrupted_by is not None:
            self.executor.interrupt(self.state.interrupted_by)

        spawn_error: Optional[str] = None
        outcome: Optional[CommandOutcome] = None
        self.lock_manager.write_marker(config.slug, config.command)
        timeout = config.max_run_minutes * 60 if config.kill_after_max else None
        try:
            outcome = self.executor.run(config.command, config.workdir, timeout=timeout)
        except OSError as e:
            spawn_error = f"Failed to start command '{config.command}': {e}"
        self.state.child_pid = self.executor.pid

        if self.state.interrupted_by is not None:
            logger.warning(
                f"Job '{config.name}' was interrupted by signal {self.state.interrupted_by}; "
                f"no alert sent"
            )
            return EXIT_SUCCESS

        if spawn_error:
            logger.error(spawn_error)
            self._report(spawn_error)
            return EXIT_FAILURE

        error_text = self.error_filter.filter_file(self.state.error_buffer)
        if outcome.timed_out:
            error_text = (
                f"Command exceeded the maximum run time of {config.max_run_minutes:g} minutes "
                f"and was terminated\n" + error_text
            )

        if outcome.returncode != 0:
            logger.info(f"Command exit status {outcome.returncode} (stderr decides the job result)")

        if error_text:
            logger.error(f"Job '{config.name}' produced error output:\n{error_text.rstrip()}")
            self._report(error_text)
            return EXIT_FAILURE

        logger.info(f"Job '{config.name}' completed successfully")
        return EXIT_SUCCESS

    def _handle_already_held(self, status: AlreadyHeld) -> int:
        config = self.config
        if status.holder_pid is not None:
            holder = f"held by pid {status.holder_pid}"
        else:
            holder = "instance marker missing, holder may be cleaning up"

        if status.age_minutes <= config.max_run_minutes:
            logger.info(
                f"Job '{config.name}' already running ({holder}, "
                f"{status.age_minutes:.1f} min old); exiting"
            )
            return EXIT_SUCCESS

        message = (
            f"Lock for job '{config.name}' is {int(status.age_minutes)} minutes old, "
            f"exceeding the maximum run time of {config.max_run_minutes:g} minutes ({holder})"
        )
        logger.error(message)
        self._report(message)
        return EXIT_FAILURE

    def _report(self, text: str) -> AlertOutcome:
        now = self.clock()
        stamp = datetime.fromtimestamp(now).strftime('%Y-%m-%d %H:%M:%S')
        header = f"=== {stamp} {self.config.name} on {socket.gethostname()} (pid {os.getpid()}) ==="
        outcome = self.throttle.report(f"{header}\n{text.rstrip()}\n", now=now)
        logger.info(f"Alert throttle outcome: {outcome.value}")
        return outcome

    def _notify_environment_error(self, message: str) -> None:
        # The alert store may be unwritable here, so notify without throttling
        report = self.throttle.dispatch(f"{self.config.name}: {message}\n")
        if report.failed:
            logger.error(f"Environment error notification failed for {', '.join(report.failed)}")

    def _handle_signal(self, signum, frame) -> None:
        """Forward termination to the child and mark the run as interrupted."""
        if self.state.interrupted_by is None:
            self.state.interrupted_by = signum
            logger.warning(f"Received signal {signum}; terminating child process")
        if self.executor is not None:
            self.executor.interrupt(signum)

    def _install_signal_handlers(self) -> Dict[int, object]:
        previous: Dict[int, object] = {}
        if not self.handle_signals or threading.current_thread() is not threading.main_thread():
            return previous
        for signum in self.HANDLED_SIGNALS:
            previous[signum] = signal.signal(signum, self._handle_signal)
        return previous

    def _restore_signal_handlers(self, previous: Dict[int, object]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def _cleanup(self) -> None:
        if self.state.error_buffer is not None:
            try:
                self.state.error_buffer.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove error buffer {self.state.error_buffer}: {e}")

        if self._debug_handler is not None:
            package_logger = logging.getLogger(PACKAGE_LOGGER)
            package_logger.removeHandler(self._debug_handler)
            self._debug_handler.close()
            self._debug_handler = None
            if self._previous_level is not None:
                package_logger.setLevel(self._previous_level)
                self._previous_level = None
