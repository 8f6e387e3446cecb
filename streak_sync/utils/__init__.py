"""
streak_sync.utils - Utility module

Common utilities including logging configuration and the run lock.
"""

from streak_sync.utils.lock import LockError, RunLock, RunLockHeldError

__all__ = ["LockError", "RunLock", "RunLockHeldError"]
