"""Out-of-band signals delivered into a run.

Each stage owns its own channels, so an event can only ever be consumed by
the gate of the stage it was addressed to.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime


def approval_channel(stage_key: str) -> str:
    """Name of the channel carrying ApprovalEvents for a stage."""
    return f"{stage_key}-approval"


def outcome_channel(stage_key: str) -> str:
    """Name of the channel carrying TestOutcomes for a stage."""
    return f"{stage_key}-test-complete"


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True, slots=True)
class ApprovalEvent:
    """A human decision on an approval or preparation stage."""

    stage_key: str
    operator: str
    approved: bool
    comment: str = ""
    timestamp: str = field(default_factory=_utc_now_iso)


@dataclass(frozen=True, slots=True)
class TestOutcome:
    """Completion report for a test stage.

    all_passed=False is a legitimate result, not an error.
    """

    __test__ = False  # not a pytest test class

    stage_key: str
    all_passed: bool
