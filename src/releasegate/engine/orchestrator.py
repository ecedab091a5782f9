"""Orchestrator: drives one upgrade run through its stage catalog.

Coordinates:
- Catalog fetch (activity, falls back to the default catalog)
- Stage sequencing: enabled stages in ascending order
- Dispatch of each stage to its gate by StageKind
- Fire-and-forget stage notifications
- Terminal archive of successful runs
- Run state and timeline, exposed through the "run_state" query

The same object is also the client of its runs: start(), submit_approval(),
submit_test_result() and describe() address runs by version id using the
structured RunId naming scheme.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from releasegate.contracts.enums import FailureKind, GateOutcome, RunStatus, StageKind, TimelineStatus
from releasegate.contracts.errors import ActivityFailed, StageFailure
from releasegate.contracts.events import RunFinished, StageEntered, StageResolved
from releasegate.contracts.run import RunId, RunResult, RunState, StageTimelineEntry, UpgradeRequest
from releasegate.contracts.signals import ApprovalEvent, TestOutcome, approval_channel, outcome_channel
from releasegate.contracts.stages import STAGE_COMPLETED, FlowConfig, StageSpec
from releasegate.core.catalog import DirectoryCatalogSource
from releasegate.core.events import NullEventBus
from releasegate.core.logging import get_logger
from releasegate.engine.activities import ExternalEffects
from releasegate.engine.gates import (
    DEFAULT_TEST_TIMEOUT,
    GateResult,
    wait_for_approval,
    wait_for_approval_with_auto_pass,
    wait_for_test_result,
)
from releasegate.engine.retry import RetryConfig
from releasegate.engine.runtime import DurableRuntime, RunContext, RunHandle

if TYPE_CHECKING:
    from releasegate.core.catalog import CatalogSource
    from releasegate.core.config import ReleaseGateSettings
    from releasegate.core.events import EventBusProtocol
    from releasegate.engine.activities import Archiver, Notifier
    from releasegate.engine.clock import Clock

QUERY_RUN_STATE = "run_state"

# None means the stage resolved negatively as data (a failed test gate)
StageHandler = Callable[[RunContext, StageSpec], GateResult | None]


class RunStateTracker:
    """Owns the RunState of one run.

    Mutations come from the run's thread; snapshot() may be called from any
    thread via the query handler.
    """

    def __init__(self, request: UpgradeRequest) -> None:
        self._lock = threading.Lock()
        self._state = RunState(
            version_id=request.version_id,
            item_ids=tuple(request.item_ids),
            current_stage="",
        )

    def snapshot(self) -> RunState:
        with self._lock:
            return self._state.snapshot()

    def load_catalog(self, config: FlowConfig) -> None:
        with self._lock:
            self._state.timeline = [StageTimelineEntry(key=s.key, name=s.name) for s in config.enabled_stages()]

    def enter_stage(self, stage: StageSpec, now: float) -> None:
        with self._lock:
            self._state.current_stage = stage.key
            entry = self._state.timeline_entry(stage.key)
            entry.status = TimelineStatus.IN_PROGRESS
            entry.started_at = now

    def resolve_stage(self, result: GateResult, now: float) -> None:
        with self._lock:
            entry = self._state.timeline_entry(result.stage_key)
            entry.status = (
                TimelineStatus.AUTO_PASSED if result.outcome is GateOutcome.AUTO_PASSED else TimelineStatus.PASSED
            )
            entry.completed_at = now
            entry.operator = result.operator
            entry.rejections = result.rejections

    def is_running(self) -> bool:
        with self._lock:
            return self._state.status is RunStatus.RUNNING

    def active_stage(self) -> str | None:
        """Key of the stage in progress, if any."""
        with self._lock:
            for entry in self._state.timeline:
                if entry.status is TimelineStatus.IN_PROGRESS:
                    return entry.key
            return None

    def all_stages_passed(self) -> None:
        with self._lock:
            self._state.current_stage = STAGE_COMPLETED

    def complete(self) -> RunState:
        with self._lock:
            self._state.transition_to(RunStatus.COMPLETED)
            return self._state.snapshot()

    def fail(self, message: str, failure: FailureKind, *, stage_key: str | None, now: float) -> RunState:
        with self._lock:
            self._state.transition_to(RunStatus.FAILED)
            self._state.failure_message = message
            self._state.failure = failure
            if stage_key is not None:
                entry = self._state.timeline_entry(stage_key)
                entry.status = TimelineStatus.FAILED
                entry.completed_at = now
            return self._state.snapshot()


class Orchestrator:
    """Runs upgrades through their stage catalogs on a durable runtime.

    Example:
        runtime = DurableRuntime()
        orchestrator = Orchestrator(runtime, ExternalEffects(catalogs=catalogs))

        handle = orchestrator.start(UpgradeRequest(version_id="V202610-001", flow_config_id="1"))
        orchestrator.submit_approval("V202610-001", ApprovalEvent("bte_confirm", "alice", approved=True))
        print(orchestrator.describe("V202610-001").current_stage)
    """

    def __init__(
        self,
        runtime: DurableRuntime,
        effects: ExternalEffects,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
        retry_config: RetryConfig | None = None,
        test_timeout: timedelta = DEFAULT_TEST_TIMEOUT,
        event_bus: EventBusProtocol | None = None,
    ) -> None:
        """Initialize with injected collaborators.

        Args:
            runtime: Durable-execution runtime that hosts the runs
            effects: External-effects adapter (catalogs, notify, archive)
            logger: Structured logger. Defaults to this module's logger.
            retry_config: Activity retry policy. Defaults to the runtime's.
            test_timeout: Fixed deadline of every test gate
            event_bus: Receives StageEntered/StageResolved/RunFinished
        """
        self._runtime = runtime
        self._effects = effects
        self._logger = logger if logger is not None else get_logger(__name__)
        self._retry = retry_config
        self._test_timeout = test_timeout
        self._events = event_bus if event_bus is not None else NullEventBus()
        self._handlers: dict[StageKind, StageHandler] = {
            StageKind.APPROVAL: self._run_approval_stage,
            StageKind.PREPARE: self._run_approval_stage,
            StageKind.TEST: self._run_test_stage,
        }
        missing = set(StageKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no stage handler for kinds: {sorted(missing)}")

    @classmethod
    def from_settings(
        cls,
        settings: ReleaseGateSettings,
        *,
        clock: Clock | None = None,
        catalogs: CatalogSource | None = None,
        notifier: Notifier | None = None,
        archiver: Archiver | None = None,
        event_bus: EventBusProtocol | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> Orchestrator:
        """Build a runtime, adapter and orchestrator from validated settings.

        An explicit `catalogs` source wins over settings.catalog.directory.
        """
        logger = get_logger(__name__)
        retry = RetryConfig.from_settings(settings.retry)
        runtime = DurableRuntime(
            clock=clock,
            retry_config=retry,
            activity_timeout=settings.activity.start_to_close_seconds,
            poll_interval=settings.runtime.poll_interval_seconds,
            detached_workers=settings.runtime.detached_workers,
            sleep=sleep,
        )
        if catalogs is None and settings.catalog.directory is not None:
            catalogs = DirectoryCatalogSource(settings.catalog.directory)
        effects = ExternalEffects(
            catalogs=catalogs,
            notifier=notifier,
            archiver=archiver,
            default_config_id=settings.catalog.default_config_id,
            logger=logger,
        )
        return cls(
            runtime,
            effects,
            logger=logger,
            retry_config=retry,
            test_timeout=timedelta(hours=settings.gates.test_timeout_hours),
            event_bus=event_bus,
        )

    @property
    def runtime(self) -> DurableRuntime:
        return self._runtime

    # -- client API -----------------------------------------------------------

    def start(self, request: UpgradeRequest) -> RunHandle[RunResult]:
        """Start the upgrade run for a version.

        Raises:
            RunAlreadyStarted: If the version already has a live run.
        """
        return self._runtime.start(RunId.for_version(request.version_id), self.execute, request)

    def handle(self, version_id: str) -> RunHandle[RunResult]:
        return self._runtime.get_handle(RunId.for_version(version_id))

    def submit_approval(self, version_id: str, event: ApprovalEvent) -> None:
        """Deliver an approval decision to the stage named in the event."""
        self._runtime.signal(RunId.for_version(version_id), approval_channel(event.stage_key), event)
        self._logger.info(
            "approval submitted",
            version_id=version_id,
            stage=event.stage_key,
            operator=event.operator,
            approved=event.approved,
        )

    def submit_test_result(self, version_id: str, outcome: TestOutcome) -> None:
        """Deliver a test-completion report to the stage named in the outcome."""
        self._runtime.signal(RunId.for_version(version_id), outcome_channel(outcome.stage_key), outcome)
        self._logger.info(
            "test result submitted",
            version_id=version_id,
            stage=outcome.stage_key,
            all_passed=outcome.all_passed,
        )

    def describe(self, version_id: str) -> RunState:
        """Current RunState snapshot of a version's run."""
        state: RunState = self._runtime.query(RunId.for_version(version_id), QUERY_RUN_STATE)
        return state

    def result(self, version_id: str, timeout: float | None = None) -> RunResult:
        """Wait for a version's run to finish.

        Raises:
            StageTimeout, StageRejected, ActivityFailed: As raised by the run.
            TimeoutError: If the run is still running after `timeout` seconds.
        """
        result: RunResult = self.handle(version_id).result(timeout=timeout)
        return result

    # -- workflow ---------------------------------------------------------------

    def execute(self, ctx: RunContext, request: UpgradeRequest) -> RunResult:
        """Workflow body of one upgrade run.

        Returns a RunResult for completed runs and for failed test gates.

        Raises:
            StageTimeout: A gate deadline passed
            StageRejected: An auto-pass approval was rejected
            ActivityFailed: Catalog fetch or archive exhausted its retries
            Exception: Anything unexpected, after the run is marked FAILED
        """
        log = self._logger.bind(run_id=str(ctx.run_id), version_id=request.version_id)
        tracker = RunStateTracker(request)
        ctx.set_query_handler(QUERY_RUN_STATE, tracker.snapshot)
        log.info("upgrade run started", version=request.display_name, flow_config_id=request.flow_config_id)

        try:
            return self._run_stages(ctx, request, tracker, log)
        except Exception as e:
            # Expected failures were recorded where they were raised
            if tracker.is_running():
                message = f"run aborted: {type(e).__name__}: {e}"
                self._fail(log, tracker, message, FailureKind.INTERNAL_ERROR, tracker.active_stage(), ctx.now())
            raise

    def _run_stages(
        self,
        ctx: RunContext,
        request: UpgradeRequest,
        tracker: RunStateTracker,
        log: structlog.stdlib.BoundLogger,
    ) -> RunResult:
        try:
            config = ctx.execute_activity(
                "fetch_stage_catalog",
                self._effects.fetch_stage_catalog,
                request.flow_config_id,
                retry=self._retry,
            )
        except ActivityFailed as e:
            self._fail(log, tracker, f"failed to load flow config: {e}", FailureKind.ACTIVITY_FAILED, None, ctx.now())
            raise

        tracker.load_catalog(config)
        for stage in config.enabled_stages():
            tracker.enter_stage(stage, ctx.now())
            log.info("stage started", stage=stage.key, stage_name=stage.name, kind=stage.kind.value)
            self._events.emit(
                StageEntered(
                    version_id=request.version_id,
                    stage_key=stage.key,
                    stage_name=stage.name,
                    kind=stage.kind,
                )
            )
            # Deliberately not awaited: informational, unordered, best effort
            ctx.start_detached(
                "notify",
                self._effects.notify,
                f"Version {request.display_name} entered stage [{stage.name}]",
                retry=self._retry,
            )

            try:
                result = self._handlers[stage.kind](ctx, stage)
            except (StageFailure, ActivityFailed) as e:
                message = f"{stage.name} ({stage.key}) failed: {e}"
                self._fail(log, tracker, message, e.failure_kind, stage.key, ctx.now())
                raise

            if result is None:
                message = f"{stage.name} ({stage.key}) did not pass"
                state = self._fail(log, tracker, message, FailureKind.TEST_FAILED, stage.key, ctx.now())
                return self._result(state, message)

            tracker.resolve_stage(result, ctx.now())
            log.info("stage completed", stage=stage.key, outcome=result.outcome.value, rejections=result.rejections)
            self._events.emit(
                StageResolved(
                    version_id=request.version_id,
                    stage_key=stage.key,
                    outcome=result.outcome,
                    next_stage=config.next_stage_after(stage.key),
                    rejections=result.rejections,
                )
            )

        tracker.all_stages_passed()
        try:
            ctx.execute_activity("archive_run", self._effects.archive_run, request.version_id, retry=self._retry)
        except ActivityFailed as e:
            self._fail(log, tracker, f"archive failed: {e}", FailureKind.ACTIVITY_FAILED, None, ctx.now())
            raise

        state = tracker.complete()
        message = "upgrade completed"
        log.info("upgrade run completed", version=request.display_name)
        self._events.emit(
            RunFinished(
                version_id=state.version_id,
                status=state.status,
                current_stage=state.current_stage,
                message=message,
            )
        )
        return self._result(state, message)

    # -- stage handlers -----------------------------------------------------------

    def _run_approval_stage(self, ctx: RunContext, stage: StageSpec) -> GateResult:
        if stage.auto_pass:
            return wait_for_approval_with_auto_pass(ctx, stage.key, stage.timeout)
        return wait_for_approval(ctx, stage.key, stage.timeout)

    def _run_test_stage(self, ctx: RunContext, stage: StageSpec) -> GateResult | None:
        outcome = wait_for_test_result(ctx, stage.key, self._test_timeout)
        if not outcome.all_passed:
            return None
        return GateResult(stage_key=stage.key, outcome=GateOutcome.PASSED)

    # -- helpers ----------------------------------------------------------------

    def _fail(
        self,
        log: structlog.stdlib.BoundLogger,
        tracker: RunStateTracker,
        message: str,
        failure: FailureKind,
        stage_key: str | None,
        now: float,
    ) -> RunState:
        state = tracker.fail(message, failure, stage_key=stage_key, now=now)
        log.warning("upgrade run failed", stage=stage_key, failure=failure.value, message=message)
        self._events.emit(
            RunFinished(
                version_id=state.version_id,
                status=state.status,
                current_stage=state.current_stage,
                message=message,
                failure=failure,
            )
        )
        return state

    @staticmethod
    def _result(state: RunState, message: str) -> RunResult:
        return RunResult(
            version_id=state.version_id,
            status=state.status,
            current_stage=state.current_stage,
            message=message,
            failure=state.failure,
        )
