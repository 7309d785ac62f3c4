"""Pytest configuration and fixtures."""

import copy
import os
import tempfile
from collections.abc import Generator
from typing import Any

import pytest

from fakes import SAMPLE_ITINERARY, all_tiers_flags, fast_config, make_adapters
from tripweaver.db.manager import DatabaseManager
from tripweaver.generation import GenerationOrchestrator


@pytest.fixture
def sample_itinerary() -> dict[str, Any]:
    return copy.deepcopy(SAMPLE_ITINERARY)


@pytest.fixture
def orchestrator() -> GenerationOrchestrator:
    """Orchestrator with healthy fake adapters and Phase 2 on for paid tiers."""
    return GenerationOrchestrator(
        adapters=make_adapters(),
        flags=all_tiers_flags(),
        config=fast_config(),
    )


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    # Cleanup
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(db_path + suffix)
        except OSError:
            pass


@pytest.fixture
def db_manager(temp_db_path: str) -> Generator[DatabaseManager, None, None]:
    """Create a DatabaseManager with a temporary database."""
    manager = DatabaseManager(database_url=f"sqlite:///{temp_db_path}")
    manager.init_db()
    yield manager
    manager.close()
