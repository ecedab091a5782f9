"""All status codes, kinds, and outcomes used across subsystem boundaries.

Stage kinds are a CLOSED set. The persisted catalog stores them as lowercase
strings; anything outside this set is rejected when the catalog is parsed,
never carried through to the orchestrator.
"""

from enum import StrEnum


class StageKind(StrEnum):
    """Kind of gate a stage is resolved by.

    Stored in the persisted catalog (stage records, field "type").
    """

    APPROVAL = "approval"
    PREPARE = "prepare"
    TEST = "test"


class RunStatus(StrEnum):
    """Status of an upgrade run.

    Transitions are monotonic: RUNNING -> COMPLETED | FAILED.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class GateOutcome(StrEnum):
    """How a gate resolved successfully.

    Failures are not outcomes - they are raised (StageTimeout, StageRejected)
    or reported as FailureKind.TEST_FAILED.
    """

    PASSED = "passed"
    AUTO_PASSED = "auto_passed"


class TimelineStatus(StrEnum):
    """Per-stage status shown in a run's timeline."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    AUTO_PASSED = "auto_passed"
    FAILED = "failed"


class FailureKind(StrEnum):
    """Why a run ended in RunStatus.FAILED.

    Values:
        STAGE_TIMEOUT: A gate deadline passed with no resolving signal
        STAGE_REJECTED: An auto-pass approval was explicitly rejected
        TEST_FAILED: A test gate reported all_passed=False (not an exception)
        ACTIVITY_FAILED: A side-effecting call exhausted its retry budget
        INTERNAL_ERROR: The run raised an unexpected exception
    """

    STAGE_TIMEOUT = "stage_timeout"
    STAGE_REJECTED = "stage_rejected"
    TEST_FAILED = "test_failed"
    ACTIVITY_FAILED = "activity_failed"
    INTERNAL_ERROR = "internal_error"


class HistoryEventType(StrEnum):
    """Kinds of events the runtime records in a run's history."""

    RUN_STARTED = "run_started"
    SIGNAL_RECEIVED = "signal_received"
    TIMER_STARTED = "timer_started"
    TIMER_FIRED = "timer_fired"
    TIMER_CANCELLED = "timer_cancelled"
    ACTIVITY_COMPLETED = "activity_completed"
    ACTIVITY_FAILED = "activity_failed"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"


class ExecutionStatus(StrEnum):
    """Status of a run's execution in the durable runtime.

    Distinct from RunStatus: a run whose test gate reports failures ends
    with RunStatus.FAILED but ExecutionStatus.COMPLETED, because the workflow
    returned normally. ExecutionStatus.FAILED means the workflow raised.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
