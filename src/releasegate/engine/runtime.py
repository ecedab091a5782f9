"""DurableRuntime: in-process durable-execution substrate for upgrade runs.

Provides what the orchestration requires from a durable-execution service:
- Named runs started from a workflow function and an input payload
- Per-run, per-channel signals that persist until consumed
- Revocable timers scheduled as absolute deadlines on an injected Clock
- Side-effecting activities with a start-to-close timeout and bounded retry
- Detached (fire-and-forget) activities
- Introspection: execution status, history, and named query handlers

Threading model:
    Each run executes on its own thread. Workflow code is a single thread of
    control that suspends only inside RunContext.select(). Signals for a run
    are queued under that run's lock and consumed one at a time by the run's
    own thread, so a run's state is never mutated concurrently. Runs share no
    mutable state except the activity worker pools.

Time:
    Deadlines are read from the Clock, never from the wall clock. A waiting
    run re-checks the clock at least every poll_interval seconds of real time,
    which is what lets an advanced MockClock fire timers in tests.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

from releasegate.contracts.enums import ExecutionStatus, HistoryEventType
from releasegate.contracts.errors import ActivityFailed, RunAlreadyStarted, RunNotFound, RunNotRunning
from releasegate.contracts.run import HistoryEvent, RunId
from releasegate.engine.clock import DEFAULT_CLOCK
from releasegate.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager

if TYPE_CHECKING:
    from releasegate.engine.clock import Clock

P = TypeVar("P")
R = TypeVar("R")
T = TypeVar("T")

Workflow = Callable[["RunContext", P], R]


@dataclass(frozen=True, slots=True)
class Selection:
    """Which side of a signal-vs-timer race won.

    Exactly one of: timed_out is True, or payload holds the consumed signal.
    """

    timed_out: bool
    payload: Any = None


@dataclass(frozen=True, slots=True)
class RunDescription:
    """External view of a run's execution."""

    run_id: RunId
    status: ExecutionStatus
    history_length: int
    error: str | None = None


class Timer:
    """A revocable timer armed against one absolute deadline.

    Created by RunContext.new_timer(). Once fired or cancelled it never
    changes state again.
    """

    def __init__(self, run: _Run, timer_id: int, deadline: float, duration: float) -> None:
        self._run = run
        self.timer_id = timer_id
        self.deadline = deadline
        self.duration = duration
        self._fired = False
        self._cancelled = False

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        return not (self._fired or self._cancelled)

    def is_due(self, now: float) -> bool:
        return self.pending and now >= self.deadline

    def cancel(self) -> None:
        """Revoke the timer. No-op if it already fired or was cancelled."""
        with self._run.cond:
            if not self.pending:
                return
            self._cancelled = True
            self._run.record(HistoryEventType.TIMER_CANCELLED, timer_id=self.timer_id)

    def _fire(self) -> None:
        # Caller holds the run lock
        self._fired = True
        self._run.record(HistoryEventType.TIMER_FIRED, timer_id=self.timer_id)


class SignalChannel:
    """Read side of a named per-run signal channel."""

    def __init__(self, run: _Run, name: str) -> None:
        self._run = run
        self.name = name

    @property
    def pending(self) -> int:
        """Number of delivered signals not yet consumed."""
        with self._run.cond:
            return len(self._run.channels.get(self.name, ()))

    def close(self) -> None:
        """Stop accepting signals. Queued and later signals are discarded."""
        with self._run.cond:
            self._run.closed_channels.add(self.name)
            self._run.channels.pop(self.name, None)

    def __enter__(self) -> SignalChannel:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class _Run:
    """Shared state of one run, guarded by `cond`."""

    def __init__(self, run_id: RunId, clock: Clock) -> None:
        self.run_id = run_id
        self.clock = clock
        self.cond = threading.Condition(threading.RLock())
        self.channels: dict[str, deque[Any]] = {}
        self.closed_channels: set[str] = set()
        self.history: list[HistoryEvent] = []
        self.queries: dict[str, Callable[[], Any]] = {}
        self.detached: list[Future[Any]] = []
        self.status = ExecutionStatus.RUNNING
        self.result: Any = None
        self.error: BaseException | None = None
        self.parked_on: tuple[str, Timer] | None = None
        self.timer_seq = 0
        self.thread: threading.Thread | None = None

    def channel_queue(self, name: str) -> deque[Any]:
        # Channels exist as soon as either side names them, so signals sent
        # before the gate starts listening are kept.
        if name not in self.channels:
            self.channels[name] = deque()
        return self.channels[name]

    def record(self, event_type: HistoryEventType, **detail: Any) -> None:
        with self.cond:
            self.history.append(
                HistoryEvent(
                    sequence=len(self.history),
                    event_type=event_type,
                    at=self.clock.monotonic(),
                    detail=detail,
                )
            )

    def is_quiescent(self) -> bool:
        """True if finished, or parked with nothing that would wake it."""
        if self.status is not ExecutionStatus.RUNNING:
            return True
        if self.parked_on is None:
            return False
        channel, timer = self.parked_on
        if self.channel_queue(channel):
            return False
        return not timer.is_due(self.clock.monotonic())


class RunContext:
    """Workflow-side API of a run.

    Only the run's own thread may call select(), new_timer() and the
    activity methods.
    """

    def __init__(self, run: _Run, runtime: DurableRuntime) -> None:
        self._run = run
        self._runtime = runtime
        self.logger: structlog.stdlib.BoundLogger = runtime.logger.bind(run_id=str(run.run_id))

    @property
    def run_id(self) -> RunId:
        return self._run.run_id

    def now(self) -> float:
        """Current clock time in seconds."""
        return self._run.clock.monotonic()

    def signal_channel(self, name: str) -> SignalChannel:
        with self._run.cond:
            self._run.closed_channels.discard(name)
            self._run.channel_queue(name)
        return SignalChannel(self._run, name)

    def new_timer(self, duration: timedelta | float) -> Timer:
        """Arm a timer whose deadline is now + duration."""
        seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        run = self._run
        with run.cond:
            run.timer_seq += 1
            timer = Timer(run, run.timer_seq, self.now() + seconds, seconds)
            run.record(HistoryEventType.TIMER_STARTED, timer_id=timer.timer_id, duration_seconds=seconds)
        return timer

    def select(self, channel: SignalChannel, timer: Timer) -> Selection:
        """Block until a signal is available on channel or the timer fires.

        A waiting signal wins over a timer that is due at the same moment.
        A cancelled timer never fires, so selecting on one waits for a signal.
        """
        run = self._run
        poll = self._runtime.poll_interval
        with run.cond:
            run.parked_on = (channel.name, timer)
            run.cond.notify_all()
            try:
                while True:
                    queue = run.channel_queue(channel.name)
                    if queue:
                        return Selection(timed_out=False, payload=queue.popleft())
                    now = run.clock.monotonic()
                    if timer.is_due(now):
                        timer._fire()
                        return Selection(timed_out=True)
                    run.cond.wait(timeout=poll)
            finally:
                run.parked_on = None

    def set_query_handler(self, name: str, handler: Callable[[], Any]) -> None:
        """Expose a read-only view of workflow state to external callers."""
        with self._run.cond:
            self._run.queries[name] = handler

    def execute_activity(
        self,
        name: str,
        fn: Callable[..., T],
        *args: Any,
        retry: RetryConfig | None = None,
        **kwargs: Any,
    ) -> T:
        """Run a side-effecting operation and wait for its result.

        Each attempt is bounded by the runtime's start-to-close timeout.
        Attempts are retried with exponential backoff.

        Raises:
            ActivityFailed: When the retry budget is exhausted.
        """
        manager = self._runtime.retry_manager(retry)

        def on_retry(attempt: int, error: BaseException) -> None:
            self.logger.warning("activity attempt failed, retrying", activity=name, attempt=attempt, error=str(error))

        try:
            result = manager.execute_with_retry(
                lambda: self._runtime.run_attempt(fn, *args, **kwargs),
                is_retryable=lambda e: True,
                on_retry=on_retry,
            )
        except MaxRetriesExceeded as e:
            self._run.record(HistoryEventType.ACTIVITY_FAILED, activity=name, attempts=e.attempts, error=str(e.last_error))
            raise ActivityFailed(name, e.attempts, e.last_error) from e.last_error
        self._run.record(HistoryEventType.ACTIVITY_COMPLETED, activity=name)
        return result

    def start_detached(
        self,
        name: str,
        fn: Callable[..., Any],
        *args: Any,
        retry: RetryConfig | None = None,
    ) -> None:
        """Run a side-effecting operation without waiting for it.

        The operation is retried like any activity, on a worker thread. Its
        outcome is recorded in history and logged but never reaches the
        workflow, and it has no ordering guarantee relative to later steps.
        """
        manager = self._runtime.retry_manager(retry)
        run = self._run
        log = self.logger

        def _detached() -> None:
            try:
                manager.execute_with_retry(
                    lambda: self._runtime.run_attempt(fn, *args),
                    is_retryable=lambda e: True,
                )
            except MaxRetriesExceeded as e:
                run.record(HistoryEventType.ACTIVITY_FAILED, activity=name, attempts=e.attempts, detached=True)
                log.warning("detached activity failed", activity=name, attempts=e.attempts, error=str(e.last_error))
                return
            run.record(HistoryEventType.ACTIVITY_COMPLETED, activity=name, detached=True)

        future = self._runtime.submit_detached(_detached)
        with run.cond:
            run.detached.append(future)


class RunHandle(Generic[R]):
    """Client-side handle of a started run."""

    def __init__(self, run: _Run, runtime: DurableRuntime) -> None:
        self._run = run
        self._runtime = runtime

    @property
    def run_id(self) -> RunId:
        return self._run.run_id

    @property
    def status(self) -> ExecutionStatus:
        with self._run.cond:
            return self._run.status

    def signal(self, channel: str, payload: Any) -> None:
        self._runtime.signal(self._run.run_id, channel, payload)

    def query(self, name: str) -> Any:
        """Invoke a query handler registered by the workflow.

        Raises:
            KeyError: If the workflow registered no handler under that name.
        """
        with self._run.cond:
            handler = self._run.queries.get(name)
        if handler is None:
            raise KeyError(f"run {self._run.run_id} has no query handler {name!r}")
        return handler()

    def history(self) -> list[HistoryEvent]:
        with self._run.cond:
            return list(self._run.history)

    def settle(self, timeout: float = 5.0) -> None:
        """Wait until the run is blocked with nothing deliverable, or finished.

        Used after delivering a signal or advancing a MockClock, so that the
        run's reaction is observable before asserting on its state.

        Raises:
            TimeoutError: If the run does not settle within `timeout` seconds.
        """
        deadline = time.monotonic() + timeout
        run = self._run
        with run.cond:
            while not run.is_quiescent():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"run {run.run_id} did not settle within {timeout}s")
                run.cond.wait(timeout=min(remaining, self._runtime.poll_interval))

    def result(self, timeout: float | None = None) -> R:
        """Wait for the run to finish and return the workflow's result.

        Raises:
            TimeoutError: If the run is still running after `timeout` seconds.
            Exception: Whatever the workflow raised.
        """
        run = self._run
        with run.cond:
            finished = run.cond.wait_for(lambda: run.status is not ExecutionStatus.RUNNING, timeout=timeout)
            if not finished:
                raise TimeoutError(f"run {run.run_id} still running after {timeout}s")
            if run.error is not None:
                raise run.error
            return run.result  # type: ignore[no-any-return]

    def wait_detached(self, timeout: float | None = None) -> None:
        """Wait for this run's fire-and-forget activities to finish."""
        with self._run.cond:
            futures = list(self._run.detached)
        wait(futures, timeout=timeout)


class DurableRuntime:
    """Starts runs and routes signals, timers, and activities to them.

    Example:
        runtime = DurableRuntime(clock=MockClock())
        handle = runtime.start(RunId.for_version("V1"), workflow, payload)
        runtime.signal(handle.run_id, "bte_confirm-approval", event)
        handle.settle()
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        retry_config: RetryConfig | None = None,
        activity_timeout: float = 300.0,
        poll_interval: float = 0.05,
        detached_workers: int = 4,
        sleep: Callable[[float], None] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        """Initialize the runtime.

        Args:
            clock: Time source for timers. Defaults to the system clock.
            retry_config: Default retry policy for activities.
            activity_timeout: Start-to-close timeout of one activity attempt (seconds).
            poll_interval: Longest real-time wait between clock checks.
            detached_workers: Worker threads for fire-and-forget activities.
            sleep: Replacement for time.sleep between activity retries.
            logger: Structured logger. Defaults to this module's logger.
        """
        self.clock: Clock = clock if clock is not None else DEFAULT_CLOCK
        self.retry_config = retry_config if retry_config is not None else RetryConfig()
        self.activity_timeout = activity_timeout
        self.poll_interval = poll_interval
        self.logger: structlog.stdlib.BoundLogger = logger if logger is not None else structlog.get_logger(__name__)
        self._sleep = sleep
        self._runs: dict[RunId, _Run] = {}
        self._lock = threading.Lock()
        self._activity_pool = ThreadPoolExecutor(thread_name_prefix="releasegate-activity")
        self._detached_pool = ThreadPoolExecutor(max_workers=detached_workers, thread_name_prefix="releasegate-detached")

    def __enter__(self) -> DurableRuntime:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # -- client API -----------------------------------------------------------

    def start(self, run_id: RunId, workflow: Workflow[P, R], payload: P) -> RunHandle[R]:
        """Create and start a run.

        A finished run's id may be reused; a live one may not.

        Raises:
            RunAlreadyStarted: If a run with this id is still running.
        """
        run = _Run(run_id, self.clock)
        with self._lock:
            existing = self._runs.get(run_id)
            if existing is not None and existing.status is ExecutionStatus.RUNNING:
                raise RunAlreadyStarted(f"run {run_id} is already running")
            self._runs[run_id] = run

        context = RunContext(run, self)
        run.record(HistoryEventType.RUN_STARTED)
        thread = threading.Thread(
            target=self._execute,
            args=(run, context, workflow, payload),
            name=f"run-{run_id}",
            daemon=True,
        )
        run.thread = thread
        thread.start()
        self.logger.debug("run started", run_id=str(run_id))
        return RunHandle(run, self)

    def get_handle(self, run_id: RunId) -> RunHandle[Any]:
        return RunHandle(self._get(run_id), self)

    def signal(self, run_id: RunId, channel: str, payload: Any) -> None:
        """Deliver a signal into a run's named channel.

        The signal persists until the run consumes it. Signals on a closed
        channel (its gate has resolved) are recorded in history and dropped.

        Raises:
            RunNotFound: If the run is unknown.
            RunNotRunning: If the run has already finished.
        """
        run = self._get(run_id)
        with run.cond:
            if run.status is not ExecutionStatus.RUNNING:
                raise RunNotRunning(f"run {run_id} is {run.status}")
            if channel in run.closed_channels:
                run.record(HistoryEventType.SIGNAL_RECEIVED, channel=channel, dropped=True)
                return
            run.channel_queue(channel).append(payload)
            run.record(HistoryEventType.SIGNAL_RECEIVED, channel=channel)
            run.cond.notify_all()

    def describe(self, run_id: RunId) -> RunDescription:
        run = self._get(run_id)
        with run.cond:
            return RunDescription(
                run_id=run_id,
                status=run.status,
                history_length=len(run.history),
                error=str(run.error) if run.error is not None else None,
            )

    def query(self, run_id: RunId, name: str) -> Any:
        return self.get_handle(run_id).query(name)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting activities. Running workflows are not interrupted."""
        self._detached_pool.shutdown(wait=wait)
        self._activity_pool.shutdown(wait=wait)

    # -- used by RunContext -----------------------------------------------------

    def retry_manager(self, retry: RetryConfig | None) -> RetryManager:
        return RetryManager(retry if retry is not None else self.retry_config, sleep=self._sleep)

    def run_attempt(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute one activity attempt under the start-to-close timeout.

        An attempt that times out is abandoned (its thread is not killed)
        and counts as a failed attempt.
        """
        future = self._activity_pool.submit(fn, *args, **kwargs)
        return future.result(timeout=self.activity_timeout)

    def submit_detached(self, fn: Callable[[], None]) -> Future[None]:
        return self._detached_pool.submit(fn)

    # -- internals --------------------------------------------------------------

    def _get(self, run_id: RunId) -> _Run:
        with self._lock:
            run = self._runs.get(run_id)
        if run is None:
            raise RunNotFound(f"no run {run_id}")
        return run

    def _execute(self, run: _Run, context: RunContext, workflow: Workflow[P, R], payload: P) -> None:
        try:
            result = workflow(context, payload)
        except Exception as e:
            with run.cond:
                run.error = e
                run.status = ExecutionStatus.FAILED
                run.record(HistoryEventType.RUN_FAILED, error=str(e), error_type=type(e).__name__)
                run.cond.notify_all()
            self.logger.warning("run failed", run_id=str(run.run_id), error=str(e), error_type=type(e).__name__)
            return
        with run.cond:
            run.result = result
            run.status = ExecutionStatus.COMPLETED
            run.record(HistoryEventType.RUN_COMPLETED)
            run.cond.notify_all()
        self.logger.debug("run completed", run_id=str(run.run_id))
