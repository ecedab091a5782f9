"""Shared test fixtures and helpers.

Runtime fixtures:
- mock_clock: MockClock driving every timer; tests advance it explicitly
- sleeps: Backoff waits requested by the retry layer (no real sleeping)
- runtime: DurableRuntime on mock_clock with a short poll interval
- orchestrator: Orchestrator on runtime with recording side effects

Driving a run:
    handle = orchestrator.start(request)
    handle.settle()                      # parked at the first gate
    orchestrator.submit_approval(...)
    handle.settle()                      # reaction is now observable
    mock_clock.advance(timedelta(hours=24))
    handle.settle()                      # timer fired

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from releasegate.core.catalog import InMemoryCatalogSource
from releasegate.core.events import EventBus
from releasegate.engine.activities import ExternalEffects
from releasegate.engine.clock import MockClock
from releasegate.engine.orchestrator import Orchestrator
from releasegate.engine.retry import RetryConfig
from releasegate.engine.runtime import DurableRuntime
from tests.fixtures.catalogs import approve_then_test_flow
from tests.fixtures.effects import RecordingArchiver, RecordingNotifier

# =============================================================================
# Hypothesis profiles
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
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
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))

# Real-time poll interval of waiting runs. Small so MockClock advances are
# noticed quickly; settle() does the rest.
TEST_POLL_INTERVAL = 0.005


# =============================================================================
# Runtime fixtures
# =============================================================================


@pytest.fixture
def mock_clock() -> MockClock:
    return MockClock()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff waits requested between activity retries."""
    return []


@pytest.fixture
def runtime(mock_clock: MockClock, sleeps: list[float]) -> Iterator[DurableRuntime]:
    rt = DurableRuntime(
        clock=mock_clock,
        retry_config=RetryConfig(),
        activity_timeout=5.0,
        poll_interval=TEST_POLL_INTERVAL,
        sleep=sleeps.append,
    )
    yield rt
    rt.shutdown(wait=False)


# =============================================================================
# Orchestrator fixtures
# =============================================================================


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def archiver() -> RecordingArchiver:
    return RecordingArchiver()


@pytest.fixture
def catalogs() -> InMemoryCatalogSource:
    """Catalog source preloaded with "1": bte_confirm then bte_test."""
    return InMemoryCatalogSource({"1": approve_then_test_flow()})


@pytest.fixture
def effects(
    catalogs: InMemoryCatalogSource,
    notifier: RecordingNotifier,
    archiver: RecordingArchiver,
) -> ExternalEffects:
    return ExternalEffects(catalogs=catalogs, notifier=notifier, archiver=archiver)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def orchestrator(runtime: DurableRuntime, effects: ExternalEffects, event_bus: EventBus) -> Orchestrator:
    return Orchestrator(runtime, effects, event_bus=event_bus)


# =============================================================================
# Logging isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    """Undo configure_logging() calls made by a test.

    configure_logging() binds its handler to the sys.stderr of the moment,
    which is a per-test capture stream.
    """
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()
