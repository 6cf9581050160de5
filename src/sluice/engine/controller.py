"""Convergence loop controller.

State machine:

    INIT -> ITERATING -> {CONVERGED, TIMED_OUT}

Each iteration runs select -> invoke -> merge, and the next iteration
never starts before the previous merge has committed. After each merge:
- rows_written == 0            -> CONVERGED
- elapsed >= batch_duration    -> TIMED_OUT
- otherwise                    -> another iteration

The loop start time is read once at loop entry. Cancellation granularity
is "do not start the next iteration"; an in-flight iteration always runs
to its commit or fails without touching the output.

An uncapped batch size (negative) degenerates to a single pass reported
as CONVERGED: one unbounded pass already covers every eligible row.
"""

from collections.abc import Callable

import structlog
from sqlalchemy import Subquery, Table

from sluice.contracts.enums import LoopState
from sluice.contracts.events import IterationCompleted, RunSummary
from sluice.contracts.results import IterationResult, RunResult
from sluice.core.events import EventBusProtocol, NullEventBus
from sluice.core.warehouse.database import WarehouseDB
from sluice.engine.clock import DEFAULT_CLOCK, Clock
from sluice.engine.eligibility import EligibilityPolicy, select_eligible
from sluice.engine.invoker import BatchInvoker
from sluice.engine.merge import MergeWriter

logger = structlog.get_logger(__name__)

IterationListener = Callable[[IterationResult], None]


class ConvergenceLoop:
    """Drives eligibility, invocation, and merge until convergence or timeout.

    Example:
        loop = ConvergenceLoop(
            pipeline="summaries",
            db=db,
            source=source,
            policy=IdentityRetryPolicy(["id"], accept_filter),
            invoker=invoker,
            writer=writer,
            batch_size=2,
            batch_duration_secs=3600,
            clock=MockClock(),
        )
        result = loop.run()
        assert result.state is LoopState.CONVERGED
    """

    def __init__(
        self,
        *,
        pipeline: str,
        db: WarehouseDB,
        source: Subquery,
        policy: EligibilityPolicy,
        invoker: BatchInvoker,
        writer: MergeWriter,
        batch_size: int,
        batch_duration_secs: float,
        clock: Clock | None = None,
        event_bus: EventBusProtocol | None = None,
        on_iteration: IterationListener | None = None,
        run_id: str | None = None,
    ) -> None:
        if batch_duration_secs <= 0:
            raise ValueError(f"batch_duration_secs must be positive, got {batch_duration_secs}")
        self._pipeline = pipeline
        self._db = db
        self._source = source
        self._policy = policy
        self._invoker = invoker
        self._writer = writer
        self._batch_size = batch_size
        self._batch_duration_secs = batch_duration_secs
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._events = event_bus if event_bus is not None else NullEventBus()
        self._on_iteration = on_iteration
        self._run_id = run_id
        self._state = LoopState.INIT

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def output(self) -> Table:
        return self._writer.output

    @property
    def single_pass(self) -> bool:
        return self._batch_size < 0

    def run(self) -> RunResult:
        """Run iterations until a terminal state is reached."""
        if self._state is not LoopState.INIT:
            raise RuntimeError(f"ConvergenceLoop.run() called in state {self._state.value!r}; loops are single-use")

        start = self._clock.monotonic()
        iterations: list[IterationResult] = []
        self._state = LoopState.ITERATING

        while self._state is LoopState.ITERATING:
            result = self._iterate(len(iterations) + 1, start)
            iterations.append(result)
            self._state = self._next_state(result)

        elapsed = self._clock.monotonic() - start
        run_result = RunResult(
            pipeline=self._pipeline,
            state=self._state,
            iterations=tuple(iterations),
            elapsed_secs=elapsed,
            single_pass=self.single_pass,
            run_id=self._run_id,
        )
        logger.info(
            "Convergence loop finished",
            pipeline=self._pipeline,
            state=self._state.value,
            iterations=len(iterations),
            rows_written=run_result.rows_written,
            elapsed_secs=round(elapsed, 3),
        )
        self._events.emit(
            RunSummary(
                pipeline=self._pipeline,
                state=self._state,
                iterations=len(iterations),
                rows_written=run_result.rows_written,
                elapsed_secs=elapsed,
                run_id=self._run_id,
            )
        )
        return run_result

    def _iterate(self, iteration: int, start: float) -> IterationResult:
        with self._db.connection() as conn:
            eligible = select_eligible(conn, self._source, self.output, self._policy, self._batch_size)

        candidates = self._invoker.invoke(eligible.rows)
        outcome = self._writer.merge(candidates)
        elapsed = self._clock.monotonic() - start

        result = IterationResult(
            iteration=iteration,
            eligible=len(eligible),
            rows_written=outcome.rows_written,
            rejected_retryable=outcome.rejected_retryable,
            terminal_failures=outcome.terminal_failures,
            elapsed_secs=elapsed,
        )
        logger.info(
            "Iteration completed",
            pipeline=self._pipeline,
            iteration=iteration,
            eligible=result.eligible,
            written=result.rows_written,
            rejected=result.rejected_retryable,
            terminal_failures=result.terminal_failures,
            elapsed_secs=round(elapsed, 3),
        )
        if self._on_iteration is not None:
            self._on_iteration(result)
        self._events.emit(
            IterationCompleted(
                pipeline=self._pipeline,
                iteration=iteration,
                eligible=result.eligible,
                rows_written=result.rows_written,
                rejected_retryable=result.rejected_retryable,
                terminal_failures=result.terminal_failures,
                elapsed_secs=elapsed,
            )
        )
        return result

    def _next_state(self, result: IterationResult) -> LoopState:
        if self.single_pass or result.rows_written == 0:
            return LoopState.CONVERGED
        if result.elapsed_secs >= self._batch_duration_secs:
            return LoopState.TIMED_OUT
        return LoopState.ITERATING
