"""
Supervised execution of a job command.

The command runs through the shell as a child in its own process group, with
stdout appended to the job's debug log and stderr written to a fresh error
buffer. Waiting for the child is the only blocking point; ``interrupt`` may be
called from a signal handler to forward termination to the whole group.
"""

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutcome:
    """
    How the child process ended.

    Attributes:
        returncode: Child exit status (negative when killed by a signal)
        interrupted_by: Signal number received by the runner during the wait
        timed_out: True when the wall-clock cap terminated the child
    """

    returncode: int
    interrupted_by: Optional[int] = None
    timed_out: bool = False

    @property
    def interrupted(self) -> bool:
        return self.interrupted_by is not None


class CommandExecutor:
    """
    Runs one command and supervises it until it exits.

    Args:
        stdout_path: File the child's stdout is appended to
        stderr_path: File the child's stderr is written to (truncated first)
        kill_grace_seconds: Time allowed after SIGTERM before SIGKILL
    """

    def __init__(
        self,
        stdout_path: Union[str, Path],
        stderr_path: Union[str, Path],
        kill_grace_seconds: float = 10.0,
    ):
        self.stdout_path = Path(stdout_path)
        self.stderr_path = Path(stderr_path)
        self.kill_grace_seconds = kill_grace_seconds
        self.process: Optional[subprocess.Popen] = None
        self._interrupted_by: Optional[int] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def run(
        self,
        command: str,
        working_dir: Union[str, Path],
        timeout: Optional[float] = None,
    ) -> CommandOutcome:
        """
        Spawn ``command`` in ``working_dir`` and wait for it.

        Args:
            command: Shell command line
            working_dir: Directory the command runs in
            timeout: Seconds after which the child is terminated, or None

        Returns:
            CommandOutcome describing how the child ended

        Raises:
            OSError: If the child cannot be spawned
        """
        if self.process is not None:
            raise RuntimeError("CommandExecutor runs exactly one command")

        if self._interrupted_by is not None:
            logger.warning("Interrupted before the command was started")
            return CommandOutcome(returncode=-self._interrupted_by, interrupted_by=self._interrupted_by)

        with open(self.stdout_path, "ab") as stdout, open(self.stderr_path, "wb") as stderr:
            self.process = subprocess.Popen(
                command,
                shell=True,
                cwd=str(working_dir),
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                start_new_session=True,
            )
        logger.info(f"Started command (child pid {self.process.pid}): {command}")

        timed_out = False
        try:
            returncode = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Command exceeded {timeout:.0f}s; terminating child pid {self.process.pid}")
            timed_out = True
            self._terminate()
            returncode = self.process.wait()

        if self._interrupted_by is not None:
            # The handler only sent SIGTERM; make sure the child is really gone
            self._reap()
            returncode = self.process.returncode

        logger.info(f"Command finished with exit status {returncode}")
        return CommandOutcome(
            returncode=returncode,
            interrupted_by=self._interrupted_by,
            timed_out=timed_out,
        )

    def interrupt(self, signum: int = signal.SIGTERM) -> None:
        """
        Record an interruption and forward SIGTERM to the child's process group.

        Safe to call from a signal handler, before the child exists, or more
        than once.
        """
        if self._interrupted_by is None:
            self._interrupted_by = signum
        self._send(signal.SIGTERM)

    def _terminate(self) -> None:
        self._send(signal.SIGTERM)
        self._reap()

    def _reap(self) -> None:
        try:
            self.process.wait(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning(f"Child pid {self.process.pid} ignored SIGTERM; sending SIGKILL")
            self._send(signal.SIGKILL)
            self.process.wait()

    def _send(self, sig: int) -> None:
        if self.process is None or self.process.poll() is not None:
            return
        try:
            os.killpg(self.process.pid, sig)
        except ProcessLookupError:
            pass
