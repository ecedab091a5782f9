"""Error taxonomy for release orchestration.

Only three errors halt a run by propagating to the run's caller:
StageTimeout, StageRejected and ActivityFailed. A failed test gate also halts
the run, but as data (FailureKind.TEST_FAILED), not as an exception.
ConfigFetchFailed never leaves the external-effects adapter.
"""

from datetime import timedelta

from releasegate.contracts.enums import FailureKind, RunStatus


class ReleaseGateError(Exception):
    """Base class for all releasegate errors."""


# =============================================================================
# Gate failures (propagated, terminal)
# =============================================================================


class StageFailure(ReleaseGateError):
    """A gate resolved negatively. Subclasses map to a FailureKind."""

    failure_kind: FailureKind

    def __init__(self, stage_key: str, message: str) -> None:
        self.stage_key = stage_key
        super().__init__(message)


class StageTimeout(StageFailure):
    """A gate deadline passed with no resolving signal."""

    failure_kind = FailureKind.STAGE_TIMEOUT

    def __init__(self, stage_key: str, timeout: timedelta) -> None:
        self.timeout = timeout
        super().__init__(stage_key, f"stage {stage_key} timed out after {timeout}")


class StageRejected(StageFailure):
    """An auto-pass approval gate received an explicit rejection."""

    failure_kind = FailureKind.STAGE_REJECTED

    def __init__(self, stage_key: str, *, operator: str, comment: str = "") -> None:
        self.operator = operator
        self.comment = comment
        detail = f": {comment}" if comment else ""
        super().__init__(stage_key, f"stage {stage_key} rejected by {operator}{detail}")


# =============================================================================
# External effects
# =============================================================================


class ActivityFailed(ReleaseGateError):
    """A side-effecting operation exhausted its retry budget.

    Attributes:
        activity: Activity name (e.g., "archive_run")
        attempts: Number of attempts made
        last_error: The error raised by the final attempt
    """

    failure_kind = FailureKind.ACTIVITY_FAILED

    def __init__(self, activity: str, attempts: int, last_error: BaseException) -> None:
        self.activity = activity
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"activity {activity} failed after {attempts} attempt(s): {last_error}")


class ConfigFetchFailed(ReleaseGateError):
    """A stage catalog could not be resolved.

    Raised by catalog sources. The external-effects adapter recovers from it
    by substituting the built-in default catalog.
    """

    def __init__(self, config_id: str, reason: str) -> None:
        self.config_id = config_id
        self.reason = reason
        super().__init__(f"flow config {config_id!r} unavailable: {reason}")


class CatalogValidationError(ReleaseGateError, ValueError):
    """A stage catalog is structurally invalid (duplicate keys, bad fields)."""


# =============================================================================
# Run lifecycle and runtime
# =============================================================================


class InvalidRunTransition(ReleaseGateError):
    """Attempted to move a run out of a terminal status."""

    def __init__(self, current: RunStatus, requested: RunStatus) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"cannot transition run from {current} to {requested}")


class RunAlreadyStarted(ReleaseGateError):
    """A live run with the same identifier already exists."""


class RunNotFound(ReleaseGateError):
    """No run with the given identifier is known to the runtime."""


class RunNotRunning(ReleaseGateError):
    """A signal was sent to a run that has already finished."""
