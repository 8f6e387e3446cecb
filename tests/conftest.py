"""Shared fixtures for the streak_sync test suite."""

import logging

import pytest

from streak_sync.storage.db import SyncDatabase


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Undo setup_logging() so caplog keeps seeing streak_sync records."""
    logger = logging.getLogger("streak_sync")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def database():
    """Create an initialized in-memory database."""
    db = SyncDatabase(":memory:")
    db.initialize()
    return db
