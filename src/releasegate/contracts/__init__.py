"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes live in releasegate.core.config, not here.

Import patterns:
    from releasegate.contracts import StageSpec, FlowConfig, RunStatus
    from releasegate.core.config import ReleaseGateSettings
"""

from releasegate.contracts.enums import (
    ExecutionStatus,
    FailureKind,
    GateOutcome,
    HistoryEventType,
    RunStatus,
    StageKind,
    TimelineStatus,
)
from releasegate.contracts.errors import (
    ActivityFailed,
    CatalogValidationError,
    ConfigFetchFailed,
    InvalidRunTransition,
    ReleaseGateError,
    RunAlreadyStarted,
    RunNotFound,
    RunNotRunning,
    StageFailure,
    StageRejected,
    StageTimeout,
)
from releasegate.contracts.events import RunFinished, StageEntered, StageResolved
from releasegate.contracts.run import (
    RUN_ID_PREFIX,
    HistoryEvent,
    RunId,
    RunResult,
    RunState,
    StageTimelineEntry,
    UpgradeRequest,
)
from releasegate.contracts.signals import ApprovalEvent, TestOutcome, approval_channel, outcome_channel
from releasegate.contracts.stages import STAGE_COMPLETED, FlowConfig, StageSpec

__all__ = [
    "RUN_ID_PREFIX",
    "STAGE_COMPLETED",
    "ActivityFailed",
    "ApprovalEvent",
    "CatalogValidationError",
    "ConfigFetchFailed",
    "ExecutionStatus",
    "FailureKind",
    "FlowConfig",
    "GateOutcome",
    "HistoryEvent",
    "HistoryEventType",
    "InvalidRunTransition",
    "ReleaseGateError",
    "RunAlreadyStarted",
    "RunFinished",
    "RunId",
    "RunNotFound",
    "RunNotRunning",
    "RunResult",
    "RunState",
    "RunStatus",
    "StageEntered",
    "StageFailure",
    "StageKind",
    "StageRejected",
    "StageResolved",
    "StageSpec",
    "StageTimelineEntry",
    "StageTimeout",
    "TestOutcome",
    "TimelineStatus",
    "UpgradeRequest",
    "approval_channel",
    "outcome_channel",
]
