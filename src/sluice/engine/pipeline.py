"""Reconciliation pipeline: wires bootstrap, eligibility, invoke, and merge.

A PipelineDefinition is immutable per run. ReconciliationPipeline.run()
resolves the source, bootstraps the output, runs the convergence loop,
and records the run in the ledger when one is configured.
"""

from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from sluice.contracts.config_values import OperationConfig
from sluice.contracts.enums import LoopState, PipelineKind, RunStatus
from sluice.contracts.events import PipelineBootstrapped, RunFailed
from sluice.contracts.results import IterationResult, RunResult
from sluice.core.dependencies import DependencyRegistry
from sluice.core.events import EventBusProtocol, NullEventBus
from sluice.core.ledger.recorder import RunRecorder
from sluice.core.warehouse.database import WarehouseDB
from sluice.core.warehouse.sources import PublicationContext, SourceQuery, resolve_source
from sluice.engine.bootstrap import PipelineBootstrapper
from sluice.engine.clock import DEFAULT_CLOCK, Clock
from sluice.engine.controller import ConvergenceLoop
from sluice.engine.eligibility import policy_for
from sluice.engine.filters import AcceptFilter, retryable_error_filter
from sluice.engine.invoker import BatchInvoker
from sluice.engine.merge import MergeWriter
from sluice.operations.catalogue import OperationSpec
from sluice.operations.protocols import OperationBackend

logger = structlog.get_logger(__name__)

# 22 hours: one scheduled run a day with headroom
DEFAULT_BATCH_DURATION_SECS = 22 * 60 * 60
DEFAULT_SEED_LIMIT = 10

_LOOP_TO_RUN_STATUS = {
    LoopState.CONVERGED: RunStatus.CONVERGED,
    LoopState.TIMED_OUT: RunStatus.TIMED_OUT,
}


@dataclass(frozen=True)
class PipelineDefinition:
    """Immutable configuration of one reconciliation pipeline.

    Attributes:
        output_name: Output table name (also the pipeline's name)
        kind: STRUCTURED (Identity-Retry) or OBJECT (Freshness-Scan)
        operation: Catalogue entry of the remote operation
        model: Model reference passed to the operation
        source: Table name, SQL text, selectable, or callable of a PublicationContext
        unique_keys: Columns identifying an output row
        source_table: Dependency name of the source, when there is one
        accept_filter: Defaults to the operation's retryable-error filter
        operation_config: Parameters passed to every invocation
        batch_size: Rows per iteration; None uses the operation default,
            negative means uncapped (single pass)
        batch_duration_secs: Wall-clock budget for the whole loop
        seed_limit: Rows invoked when creating the output table
        updated_column: Freshness column (object pipelines)
        resurface_retryable: Freshness-Scan also re-selects retryable output rows
    """

    output_name: str
    kind: PipelineKind
    operation: OperationSpec
    model: str
    source: SourceQuery
    unique_keys: tuple[str, ...]
    source_table: str | None = None
    accept_filter: AcceptFilter | None = None
    operation_config: OperationConfig = field(default_factory=OperationConfig)
    batch_size: int | None = None
    batch_duration_secs: float = DEFAULT_BATCH_DURATION_SECS
    seed_limit: int = DEFAULT_SEED_LIMIT
    updated_column: str = "updated"
    resurface_retryable: bool = True

    def __post_init__(self) -> None:
        if not self.output_name:
            raise ValueError("output_name must not be empty")
        if not self.unique_keys:
            raise ValueError(f"Pipeline '{self.output_name}' needs at least one unique key")
        if self.kind is PipelineKind.OBJECT and len(self.unique_keys) != 1:
            raise ValueError(f"Object pipeline '{self.output_name}' takes exactly one unique key, got {list(self.unique_keys)}")
        if self.operation.kind is not self.kind:
            raise ValueError(
                f"Operation '{self.operation.name}' runs over {self.operation.kind.value} pipelines, "
                f"not {self.kind.value} pipeline '{self.output_name}'"
            )
        if self.batch_duration_secs <= 0:
            raise ValueError(f"batch_duration_secs must be positive, got {self.batch_duration_secs}")
        if self.seed_limit <= 0:
            raise ValueError(f"seed_limit must be positive, got {self.seed_limit}")

    @property
    def effective_batch_size(self) -> int:
        return self.operation.default_batch_size if self.batch_size is None else self.batch_size

    @property
    def effective_accept_filter(self) -> AcceptFilter:
        if self.accept_filter is not None:
            return self.accept_filter
        return retryable_error_filter(self.operation.status_column)

    @property
    def order_columns(self) -> tuple[str, ...]:
        """Columns defining a stable selection order."""
        if self.kind is PipelineKind.OBJECT:
            return (self.updated_column, *self.unique_keys)
        return self.unique_keys

    def describe(self) -> dict[str, Any]:
        """JSON-safe summary used for ledger hashing and dry-run output."""
        return {
            "output_name": self.output_name,
            "kind": self.kind.value,
            "operation": self.operation.name,
            "model": self.model,
            "source": self.source if isinstance(self.source, str) else type(self.source).__name__,
            "source_table": self.source_table,
            "unique_keys": list(self.unique_keys),
            "status_column": self.effective_accept_filter.status_column,
            "operation_config": self.operation_config.to_payload(),
            "batch_size": self.effective_batch_size,
            "batch_duration_secs": self.batch_duration_secs,
            "seed_limit": self.seed_limit,
            "updated_column": self.updated_column if self.kind is PipelineKind.OBJECT else None,
            "resurface_retryable": self.resurface_retryable,
        }


@dataclass
class PipelineRuntime:
    """Collaborators shared by every pipeline run in a process.

    The registry is explicit state: pass the same runtime to every
    pipeline so duplicate declarations collapse into one node.
    """

    db: WarehouseDB
    backend: OperationBackend
    registry: DependencyRegistry = field(default_factory=DependencyRegistry)
    clock: Clock = DEFAULT_CLOCK
    event_bus: EventBusProtocol = field(default_factory=NullEventBus)
    recorder: RunRecorder | None = None


def count_eligible(db: WarehouseDB, registry: DependencyRegistry, definition: PipelineDefinition) -> int | None:
    """Rows the next iteration would consider, or None before bootstrap.

    Read-only: nothing is declared, created, or invoked, so no operation
    backend is needed.
    """
    if not db.has_table(definition.output_name):
        return None
    ctx = PublicationContext(registry, definition.output_name, is_incremental=True)
    source = resolve_source(db, definition.source, ctx)
    output = db.reflect_table(definition.output_name)
    policy = policy_for(
        definition.kind,
        definition.unique_keys,
        definition.effective_accept_filter,
        updated_column=definition.updated_column,
        resurface_retryable=definition.resurface_retryable,
    )
    with db.connection() as conn:
        return len(policy.select(conn, source, output, -1))

class ReconciliationPipeline:
    """Runs pipeline definitions against a runtime."""

    def __init__(self, runtime: PipelineRuntime) -> None:
        self._runtime = runtime

    def build_invoker(self, definition: PipelineDefinition) -> BatchInvoker:
        """Invoker bound to the definition's operation and resolved model reference."""
        registry = self._runtime.registry
        model = registry.resolve(definition.model) if registry.is_declared(definition.model) else definition.model
        return BatchInvoker(
            self._runtime.backend,
            definition.operation,
            model,
            definition.operation_config,
            definition.unique_keys,
        )

    def count_eligible(self, definition: PipelineDefinition) -> int | None:
        """Rows the next iteration would consider, or None before bootstrap."""
        return count_eligible(self._runtime.db, self._runtime.registry, definition)

    def run(self, definition: PipelineDefinition) -> RunResult:
        """Bootstrap the output and run the convergence loop.

        Raises:
            BootstrapError: If the output cannot be created
            OperationContractError, OperationRequestError: On hard operation failures
            SQLAlchemyError: On warehouse failures (output keeps its last committed state)
        """
        runtime = self._runtime
        recorder = runtime.recorder
        run_id: str | None = None
        if recorder is not None:
            run_id = recorder.begin_run(
                definition.output_name,
                definition.kind,
                definition.operation.name,
                definition.describe(),
            ).run_id

        iterations_seen = 0
        rows_seen = 0

        def on_iteration(result: IterationResult) -> None:
            nonlocal iterations_seen, rows_seen
            iterations_seen += 1
            rows_seen += result.rows_written
            if recorder is not None and run_id is not None:
                recorder.record_iteration(run_id, result)

        log = logger.bind(pipeline=definition.output_name, run_id=run_id)
        try:
            accept_filter = definition.effective_accept_filter
            bootstrapper = PipelineBootstrapper(runtime.db, runtime.registry)
            bootstrapper.register(definition)
            invoker = self.build_invoker(definition)

            bootstrapped = bootstrapper.bootstrap(definition, None, invoker, accept_filter)
            runtime.event_bus.emit(
                PipelineBootstrapped(
                    pipeline=definition.output_name,
                    created=bootstrapped.result.created,
                    seeded_rows=bootstrapped.result.seeded_rows,
                )
            )

            ctx = PublicationContext(runtime.registry, definition.output_name, is_incremental=True)
            source = resolve_source(runtime.db, definition.source, ctx)
            loop = ConvergenceLoop(
                pipeline=definition.output_name,
                db=runtime.db,
                source=source,
                policy=policy_for(
                    definition.kind,
                    definition.unique_keys,
                    accept_filter,
                    updated_column=definition.updated_column,
                    resurface_retryable=definition.resurface_retryable,
                ),
                invoker=invoker,
                writer=MergeWriter(runtime.db, bootstrapped.table, definition.unique_keys, accept_filter),
                batch_size=definition.effective_batch_size,
                batch_duration_secs=definition.batch_duration_secs,
                clock=runtime.clock,
                event_bus=runtime.event_bus,
                on_iteration=on_iteration,
                run_id=run_id,
            )
            result = loop.run()
        except Exception as e:
            log.error("Pipeline run failed", error_type=type(e).__name__, error=str(e))
            if recorder is not None and run_id is not None:
                recorder.complete_run(
                    run_id,
                    RunStatus.FAILED,
                    iterations=iterations_seen,
                    rows_written=rows_seen,
                    error=f"{type(e).__name__}: {e}",
                )
            runtime.event_bus.emit(
                RunFailed(
                    pipeline=definition.output_name,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    run_id=run_id,
                )
            )
            raise

        if recorder is not None and run_id is not None:
            recorder.complete_run(
                run_id,
                _LOOP_TO_RUN_STATUS[result.state],
                iterations=len(result.iterations),
                rows_written=result.rows_written,
            )
        return replace(result, bootstrap=bootstrapped.result)
