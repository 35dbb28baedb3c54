"""
Lock manager for single-instance job execution.

A lock is a directory created with a single atomic ``mkdir`` call. Creation
either succeeds, in which case the caller owns the lock, or fails because
another run already holds it. There is no separate existence check, so two
concurrent invocations can never both win.

Inside the lock directory the owner writes one instance marker named by its
process id. The marker exists for diagnostics only.
"""

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Acquired:
    """The calling process created the lock and now owns it."""

    slug: str
    path: Path


@dataclass(frozen=True)
class AlreadyHeld:
    """
    Another run holds the lock.

    Attributes:
        slug: Job slug the lock belongs to
        age_minutes: Minutes since the lock directory was created
        holder_pid: Process id found in the instance marker, if any
        marker_missing: True when the lock exists without an instance marker
    """

    slug: str
    age_minutes: float
    holder_pid: Optional[int] = None
    marker_missing: bool = False


LockStatus = Union[Acquired, AlreadyHeld]


class LockManager:
    """
    Creates, inspects and releases per-job lock directories.

    Args:
        lock_dir: Directory the ``<slug>.lock`` directories are created in
    """

    LOCK_SUFFIX = ".lock"

    def __init__(self, lock_dir: Union[str, Path]):
        self.lock_dir = Path(lock_dir)

    def lock_path(self, slug: str) -> Path:
        return self.lock_dir / f"{slug}{self.LOCK_SUFFIX}"

    def marker_path(self, slug: str, pid: Optional[int] = None) -> Path:
        return self.lock_path(slug) / str(pid if pid is not None else os.getpid())

    def try_acquire(self, slug: str, now: Optional[float] = None) -> LockStatus:
        """
        Attempt to create the lock for ``slug`` without blocking.

        Args:
            slug: Job slug used as the mutual-exclusion key
            now: Current epoch time, used for the age of an existing lock

        Returns:
            Acquired when this call created the lock, AlreadyHeld otherwise
        """
        path = self.lock_path(slug)
        try:
            os.mkdir(path)
        except FileExistsError:
            return self._inspect(slug, now)

        logger.debug(f"Created lock directory {path}")
        return Acquired(slug=slug, path=path)

    def write_marker(self, slug: str, command: str = "", pid: Optional[int] = None) -> Path:
        """Write the instance marker for the current (or given) process."""
        marker = self.marker_path(slug, pid)
        started = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        marker.write_text(f"{started}\n{command}\n", encoding="utf-8")
        return marker

    def holder_pid(self, slug: str) -> Optional[int]:
        """Return the pid named by the instance marker, or None if there is none."""
        try:
            entries = os.listdir(self.lock_path(slug))
        except FileNotFoundError:
            return None

        for entry in sorted(entries):
            if entry.isdigit():
                return int(entry)
        return None

    def age(self, slug: str, now: Optional[float] = None) -> float:
        """
        Minutes elapsed since the lock for ``slug`` was created.

        Raises:
            FileNotFoundError: If the lock does not exist
        """
        created = os.stat(self.lock_path(slug)).st_mtime
        current = time.time() if now is None else now
        return max(0.0, (current - created) / 60.0)

    def release(self, slug: str, pid: Optional[int] = None) -> None:
        """
        Remove the instance marker and then the lock directory.

        Safe to call when either is already gone.
        """
        path = self.lock_path(slug)
        try:
            self.marker_path(slug, pid).unlink()
        except FileNotFoundError:
            logger.debug(f"Instance marker already absent in {path}")

        try:
            os.rmdir(path)
        except FileNotFoundError:
            logger.debug(f"Lock directory {path} already removed")
            return
        except OSError as e:
            # Leftover files from another holder keep the lock in place for inspection
            logger.error(f"Unable to remove lock directory {path}: {e}")
            return

        logger.debug(f"Removed lock directory {path}")

    def _inspect(self, slug: str, now: Optional[float]) -> LockStatus:
        try:
            age_minutes = self.age(slug, now)
        except FileNotFoundError:
            # Holder released between our mkdir and stat
            logger.info(f"Lock for {slug} vanished while being inspected")
            return AlreadyHeld(slug=slug, age_minutes=0.0, marker_missing=True)

        pid = self.holder_pid(slug)
        if pid is None:
            logger.warning(
                f"Lock {self.lock_path(slug)} exists without an instance marker "
                f"(holder may be finishing its cleanup)"
            )
        return AlreadyHeld(
            slug=slug,
            age_minutes=age_minutes,
            holder_pid=pid,
            marker_missing=pid is None,
        )
