"""
Single-flight run lock.

At most one sync run may execute against a local store at a time.
RunLock serializes runs across processes using a PID file, with
stale-file detection for crashed runs.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)


class LockError(Exception):
    """Raised when the lock file cannot be created, read or removed."""

    pass


class RunLockHeldError(LockError):
    """Raised when another live process already holds the run lock."""

    pass


class RunLock:
    """
    PID-file based lock guarding a sync run.

    Usage:
        lock = RunLock(Path("~/.streak-sync/sync.lock"))
        with lock:
            engine.run_sync()
    """

    def __init__(self, lock_file: Path):
        """
        Initialize the run lock.

        Args:
            lock_file: Path to the lock (PID) file
        """
        self.lock_file = Path(lock_file)
        self._held = False

    @property
    def held(self) -> bool:
        """True while this instance holds the lock."""
        return self._held

    def acquire(self) -> None:
        """
        Acquire the lock by writing the current PID.

        A lock file left behind by a process that is no longer running is
        treated as stale and replaced.

        Raises:
            RunLockHeldError: If a live process holds the lock.
            LockError: If the lock file cannot be written.
        """
        existing_pid = self.read()
        if existing_pid is not None:
            if self._is_process_running(existing_pid):
                raise RunLockHeldError(
                    f"Sync already running with PID {existing_pid} "
                    f"(lock file: {self.lock_file})"
                )
            logger.warning(
                f"Removing stale lock file (process {existing_pid} not running)"
            )
            self._remove_file()

        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            # O_EXCL so two processes cannot both create the file
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
        except FileExistsError as e:
            raise RunLockHeldError(
                f"Sync lock was taken concurrently: {self.lock_file}"
            ) from e
        except OSError as e:
            raise LockError(f"Failed to create lock file {self.lock_file}: {e}") from e

        self._held = True
        logger.debug(f"Acquired run lock {self.lock_file} (PID: {os.getpid()})")

    def release(self) -> None:
        """Release the lock if held by this instance."""
        if not self._held:
            return
        self._remove_file()
        self._held = False
        logger.debug(f"Released run lock {self.lock_file}")

    def read(self) -> int | None:
        """
        Read the PID stored in the lock file.

        Returns:
            The PID, or None if the file doesn't exist.

        Raises:
            LockError: If the file exists but cannot be read or parsed.
        """
        if not self.lock_file.exists():
            return None

        content = ""
        try:
            content = self.lock_file.read_text().strip()
            return int(content)
        except ValueError as e:
            raise LockError(
                f"Invalid PID in lock file {self.lock_file}: {content}"
            ) from e
        except OSError as e:
            raise LockError(f"Failed to read lock file {self.lock_file}: {e}") from e

    def _remove_file(self) -> None:
        try:
            self.lock_file.unlink(missing_ok=True)
        except OSError as e:
            raise LockError(f"Failed to remove lock file {self.lock_file}: {e}") from e

    @staticmethod
    def _is_process_running(pid: int) -> bool:
        """Check whether a process with the given PID exists."""
        try:
            # Signal 0 only checks for existence
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by another user
            return True

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
