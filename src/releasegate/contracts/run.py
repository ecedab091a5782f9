"""Run identity, state, and result types.

RunState is the only mutable record here. It is owned by the orchestrator of
one run; everything else reads it through snapshot().
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from releasegate.contracts.enums import FailureKind, HistoryEventType, RunStatus, TimelineStatus
from releasegate.contracts.errors import InvalidRunTransition

RUN_ID_PREFIX = "upgrade"


@dataclass(frozen=True, slots=True)
class RunId:
    """Structured run identifier.

    Renders as "<prefix>-<version_id>". The two parts are kept as separate
    fields so the version id is never recovered by slicing the rendered name.
    """

    version_id: str
    prefix: str = RUN_ID_PREFIX

    def __post_init__(self) -> None:
        if not self.version_id:
            raise ValueError("version_id must not be empty")
        if not self.prefix or "-" in self.prefix:
            raise ValueError(f"invalid run id prefix: {self.prefix!r}")

    def __str__(self) -> str:
        return f"{self.prefix}-{self.version_id}"

    @classmethod
    def for_version(cls, version_id: str) -> RunId:
        return cls(version_id=version_id)

    @classmethod
    def parse(cls, value: str, *, prefix: str = RUN_ID_PREFIX) -> RunId:
        """Parse a rendered run id, validating its prefix.

        Raises:
            ValueError: If the prefix does not match or the version id is empty.
        """
        head, sep, version_id = value.partition("-")
        if not sep or head != prefix:
            raise ValueError(f"run id {value!r} does not use the {prefix!r} naming scheme")
        return cls(version_id=version_id, prefix=prefix)


@dataclass(frozen=True, slots=True)
class UpgradeRequest:
    """Input payload for one upgrade run."""

    version_id: str
    version_name: str = ""
    item_ids: tuple[str, ...] = ()
    flow_config_id: str | None = None

    @property
    def display_name(self) -> str:
        return self.version_name or self.version_id


@dataclass(slots=True)
class StageTimelineEntry:
    """Progress of one enabled stage within a run."""

    key: str
    name: str
    status: TimelineStatus = TimelineStatus.PENDING
    started_at: float | None = None
    completed_at: float | None = None
    operator: str | None = None
    rejections: int = 0


@dataclass(slots=True)
class RunState:
    """Observable state of one upgrade run.

    Status only ever moves RUNNING -> COMPLETED or RUNNING -> FAILED.
    """

    version_id: str
    item_ids: tuple[str, ...]
    current_stage: str
    status: RunStatus = RunStatus.RUNNING
    failure_message: str | None = None
    failure: FailureKind | None = None
    timeline: list[StageTimelineEntry] = field(default_factory=list)

    def transition_to(self, status: RunStatus) -> None:
        """Move to a new status, rejecting anything non-monotonic.

        Raises:
            InvalidRunTransition: If the run is already terminal, or the
                requested status is RUNNING.
        """
        if self.status.is_terminal or status is RunStatus.RUNNING:
            raise InvalidRunTransition(self.status, status)
        self.status = status

    def timeline_entry(self, key: str) -> StageTimelineEntry:
        for entry in self.timeline:
            if entry.key == key:
                return entry
        raise KeyError(key)

    def snapshot(self) -> RunState:
        """Deep copy safe to hand to another thread."""
        return copy.deepcopy(self)


@dataclass(frozen=True, slots=True)
class RunResult:
    """Terminal result of a run, as returned by the workflow."""

    version_id: str
    status: RunStatus
    current_stage: str
    message: str
    failure: FailureKind | None = None


@dataclass(frozen=True, slots=True)
class HistoryEvent:
    """One entry in a run's execution history.

    Attributes:
        sequence: Position in the history (0-based, gap-free)
        event_type: What happened
        at: Clock time (monotonic seconds) at which it was recorded
        detail: Event-specific attributes (channel, activity name, ...)
    """

    sequence: int
    event_type: HistoryEventType
    at: float
    detail: dict[str, Any] = field(default_factory=dict)
