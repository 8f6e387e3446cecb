"""Local entity store."""

from streak_sync.storage.db import SyncDatabase

__all__ = ["SyncDatabase"]
