"""Observability events for upgrade runs.

Emitted by the orchestrator onto an event bus and consumed by CLI formatters.
Events are emitted from the run's own thread, so subscribers must not block.
"""

from dataclasses import dataclass

from releasegate.contracts.enums import FailureKind, GateOutcome, RunStatus, StageKind


@dataclass(frozen=True, slots=True)
class StageEntered:
    """Emitted when a run makes a stage current."""

    version_id: str
    stage_key: str
    stage_name: str
    kind: StageKind


@dataclass(frozen=True, slots=True)
class StageResolved:
    """Emitted when a stage's gate resolves successfully.

    next_stage is the key the run moves to, or "completed" for the last stage.
    """

    version_id: str
    stage_key: str
    outcome: GateOutcome
    next_stage: str
    rejections: int = 0


@dataclass(frozen=True, slots=True)
class RunFinished:
    """Emitted once per run when it reaches a terminal status."""

    version_id: str
    status: RunStatus
    current_stage: str
    message: str
    failure: FailureKind | None = None
