# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from conduit.core.persistence import ConduitDB, StepRecorder, TaskStore
from tests.fixtures.harness import EngineHarness

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Thread pools make timing vary
)
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


@pytest.fixture(autouse=True)
def _clear_structlog_context() -> Iterator[None]:
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def db() -> Iterator[ConduitDB]:
    database = ConduitDB.in_memory()
    yield database
    database.close()


@pytest.fixture
def recorder(db: ConduitDB) -> StepRecorder:
    return StepRecorder(db)


@pytest.fixture
def task_store(db: ConduitDB) -> TaskStore:
    return TaskStore(db)


@pytest.fixture
def make_harness() -> Iterator[Callable[..., EngineHarness]]:
    """Factory for EngineHarness instances, closed after the test."""
    created: list[EngineHarness] = []

    def factory(providers: dict[str, Any], **kwargs: Any) -> EngineHarness:
        harness = EngineHarness(providers, **kwargs)
        created.append(harness)
        return harness

    yield factory
    for harness in created:
        harness.close()
