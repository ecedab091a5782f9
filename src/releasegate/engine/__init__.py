"""Release engine: gated stage orchestration on a durable runtime.

This module provides the execution engine for upgrade runs:
- Orchestrator: Full run lifecycle management
- Gates: approval, auto-pass approval and test-result waits
- ExternalEffects: catalog fetch, notifications, archive
- DurableRuntime: runs, signals, timers and activities
- RetryManager: Retry logic with tenacity

Example:
    from releasegate.engine import DurableRuntime, ExternalEffects, Orchestrator

    with DurableRuntime() as runtime:
        orchestrator = Orchestrator(runtime, ExternalEffects())
        orchestrator.start(UpgradeRequest(version_id="V202610-001"))
"""

from releasegate.engine.activities import (
    Archiver,
    ExternalEffects,
    LoggingArchiver,
    LoggingNotifier,
    Notifier,
)
from releasegate.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from releasegate.engine.gates import (
    DEFAULT_TEST_TIMEOUT,
    GateResult,
    wait_for_approval,
    wait_for_approval_with_auto_pass,
    wait_for_test_result,
)
from releasegate.engine.orchestrator import QUERY_RUN_STATE, Orchestrator, RunStateTracker
from releasegate.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from releasegate.engine.runtime import (
    DurableRuntime,
    RunContext,
    RunDescription,
    RunHandle,
    Selection,
    SignalChannel,
    Timer,
)

__all__ = [
    "DEFAULT_CLOCK",
    "DEFAULT_TEST_TIMEOUT",
    "QUERY_RUN_STATE",
    "Archiver",
    "Clock",
    "DurableRuntime",
    "ExternalEffects",
    "GateResult",
    "LoggingArchiver",
    "LoggingNotifier",
    "MaxRetriesExceeded",
    "MockClock",
    "Notifier",
    "Orchestrator",
    "RetryConfig",
    "RetryManager",
    "RunContext",
    "RunDescription",
    "RunHandle",
    "RunStateTracker",
    "Selection",
    "SignalChannel",
    "SystemClock",
    "Timer",
    "wait_for_approval",
    "wait_for_approval_with_auto_pass",
    "wait_for_test_result",
]
