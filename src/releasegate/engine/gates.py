"""Gate primitives: races between an external signal and a deadline.

Three waits resolve every stage of a run:

- wait_for_approval: loops on rejection until approved or the ORIGINAL
  deadline passes. Rejections never extend or reset the deadline.
- wait_for_approval_with_auto_pass: a single race. Silence until the deadline
  counts as approval; an explicit rejection fails immediately.
- wait_for_test_result: a single race between a TestOutcome and a fixed
  deadline. The outcome's all_passed is returned for the caller to judge.

Each gate arms exactly one timer at entry and cancels it as soon as a signal
resolves the gate, so a stale timer can never fire into a resolved gate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from releasegate.contracts.enums import GateOutcome
from releasegate.contracts.errors import StageRejected, StageTimeout
from releasegate.contracts.signals import ApprovalEvent, TestOutcome, approval_channel, outcome_channel

if TYPE_CHECKING:
    from releasegate.engine.runtime import RunContext

# Test gates ignore the stage's own timeout.
DEFAULT_TEST_TIMEOUT = timedelta(hours=96)


@dataclass(frozen=True, slots=True)
class GateResult:
    """Successful resolution of an approval gate.

    Attributes:
        stage_key: Stage the gate belonged to
        outcome: PASSED (explicit approval) or AUTO_PASSED (deadline with auto-pass)
        operator: Who approved; None when auto-passed
        comment: Approval comment, if any
        rejections: Rejections received before the gate resolved
    """

    stage_key: str
    outcome: GateOutcome
    operator: str | None = None
    comment: str = ""
    rejections: int = 0


def _as_approval(payload: object, stage_key: str) -> ApprovalEvent:
    if not isinstance(payload, ApprovalEvent):
        raise TypeError(f"stage {stage_key}: expected ApprovalEvent on approval channel, got {type(payload).__name__}")
    return payload


def wait_for_approval(ctx: RunContext, stage_key: str, timeout: timedelta) -> GateResult:
    """Wait for an approval, looping on rejections, until one absolute deadline.

    Raises:
        StageTimeout: If the deadline passes without an approval.
    """
    timer = ctx.new_timer(timeout)
    log = ctx.logger.bind(stage=stage_key)
    rejections = 0

    with ctx.signal_channel(approval_channel(stage_key)) as channel:
        while True:
            selection = ctx.select(channel, timer)
            if selection.timed_out:
                log.info("approval timed out", rejections=rejections)
                raise StageTimeout(stage_key, timeout)

            event = _as_approval(selection.payload, stage_key)
            if event.approved:
                timer.cancel()
                log.info("approval granted", operator=event.operator, rejections=rejections)
                return GateResult(
                    stage_key=stage_key,
                    outcome=GateOutcome.PASSED,
                    operator=event.operator,
                    comment=event.comment,
                    rejections=rejections,
                )

            # Rejected: discard and wait again on the same timer
            rejections += 1
            log.info(
                "approval rejected, waiting for resubmission",
                operator=event.operator,
                comment=event.comment,
                rejections=rejections,
                remaining_seconds=max(timer.deadline - ctx.now(), 0.0),
            )


def wait_for_approval_with_auto_pass(ctx: RunContext, stage_key: str, timeout: timedelta) -> GateResult:
    """Single race: approval signal vs deadline, where the deadline passes the stage.

    Raises:
        StageRejected: If a rejection arrives before the deadline.
    """
    timer = ctx.new_timer(timeout)
    log = ctx.logger.bind(stage=stage_key)

    with ctx.signal_channel(approval_channel(stage_key)) as channel:
        selection = ctx.select(channel, timer)
    if selection.timed_out:
        log.info("no decision before deadline, auto-passed")
        return GateResult(stage_key=stage_key, outcome=GateOutcome.AUTO_PASSED)

    timer.cancel()
    event = _as_approval(selection.payload, stage_key)
    if not event.approved:
        log.info("approval rejected", operator=event.operator, comment=event.comment)
        raise StageRejected(stage_key, operator=event.operator, comment=event.comment)

    log.info("approval granted", operator=event.operator)
    return GateResult(
        stage_key=stage_key,
        outcome=GateOutcome.PASSED,
        operator=event.operator,
        comment=event.comment,
    )


def wait_for_test_result(ctx: RunContext, stage_key: str, timeout: timedelta = DEFAULT_TEST_TIMEOUT) -> TestOutcome:
    """Single race: test-completion signal vs fixed deadline.

    Returns the outcome whether or not all tests passed.

    Raises:
        StageTimeout: If no outcome arrives before the deadline.
    """
    timer = ctx.new_timer(timeout)
    log = ctx.logger.bind(stage=stage_key)

    with ctx.signal_channel(outcome_channel(stage_key)) as channel:
        selection = ctx.select(channel, timer)
    if selection.timed_out:
        log.info("test result timed out")
        raise StageTimeout(stage_key, timeout)

    timer.cancel()
    outcome = selection.payload
    if not isinstance(outcome, TestOutcome):
        raise TypeError(f"stage {stage_key}: expected TestOutcome on test channel, got {type(outcome).__name__}")
    log.info("test result received", all_passed=outcome.all_passed)
    return outcome
