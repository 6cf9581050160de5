"""RunRecorder: records pipeline runs and their iterations.

The ledger answers "what did the last runs of this pipeline do?" It is
optional and lives in its own tables, usually alongside the output
tables in the warehouse.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Row, insert, select, update

from sluice.contracts.enums import PipelineKind, RunStatus
from sluice.contracts.results import IterationResult
from sluice.core.canonical import CANONICAL_VERSION, canonical_json, stable_hash
from sluice.core.ledger.models import IterationRecord, RunRecord
from sluice.core.ledger.schema import iterations_table, metadata, runs_table
from sluice.core.warehouse.database import WarehouseDB

_TERMINAL_RUN_STATUSES = frozenset({RunStatus.CONVERGED, RunStatus.TIMED_OUT, RunStatus.FAILED})


def now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_id() -> str:
    """Generate a unique ID (UUID4 hex)."""
    return uuid.uuid4().hex


class RunRecorder:
    """Records runs to the ledger tables.

    Example:
        recorder = RunRecorder(db)
        run = recorder.begin_run("summaries", PipelineKind.STRUCTURED, "generate_text", config)
        recorder.record_iteration(run.run_id, iteration_result)
        recorder.complete_run(run.run_id, RunStatus.CONVERGED, iterations=3, rows_written=120)
    """

    def __init__(self, db: WarehouseDB) -> None:
        self._db = db
        metadata.create_all(db.engine)

    def begin_run(
        self,
        pipeline: str,
        kind: PipelineKind,
        operation: str,
        config: dict[str, Any],
        *,
        run_id: str | None = None,
    ) -> RunRecord:
        """Begin a new run in RUNNING status.

        Args:
            pipeline: Output table name the run maintains
            kind: Pipeline kind
            operation: Catalogue operation name
            config: Resolved pipeline configuration (hashed and stored)
            run_id: Optional run ID (generated if not provided)
        """
        record = RunRecord(
            run_id=run_id or generate_id(),
            pipeline=pipeline,
            kind=kind,
            operation=operation,
            config_hash=stable_hash(config),
            started_at=now(),
            status=RunStatus.RUNNING,
        )
        with self._db.connection() as conn:
            conn.execute(
                insert(runs_table).values(
                    run_id=record.run_id,
                    pipeline=record.pipeline,
                    kind=record.kind.value,
                    operation=record.operation,
                    config_hash=record.config_hash,
                    settings_json=canonical_json(config),
                    canonical_version=CANONICAL_VERSION,
                    started_at=record.started_at,
                    status=record.status.value,
                    iterations=0,
                    rows_written=0,
                )
            )
        return record

    def record_iteration(self, run_id: str, result: IterationResult) -> IterationRecord:
        record = IterationRecord(
            run_id=run_id,
            iteration=result.iteration,
            eligible=result.eligible,
            rows_written=result.rows_written,
            rejected_retryable=result.rejected_retryable,
            terminal_failures=result.terminal_failures,
            elapsed_secs=result.elapsed_secs,
            recorded_at=now(),
        )
        with self._db.connection() as conn:
            conn.execute(
                insert(iterations_table).values(
                    run_id=record.run_id,
                    iteration=record.iteration,
                    eligible=record.eligible,
                    rows_written=record.rows_written,
                    rejected_retryable=record.rejected_retryable,
                    terminal_failures=record.terminal_failures,
                    elapsed_secs=record.elapsed_secs,
                    recorded_at=record.recorded_at,
                )
            )
        return record

    def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        *,
        iterations: int = 0,
        rows_written: int = 0,
        error: str | None = None,
    ) -> RunRecord:
        """Mark a run finished.

        Raises:
            ValueError: If status is not terminal
            LookupError: If the run does not exist
        """
        if status not in _TERMINAL_RUN_STATUSES:
            raise ValueError(
                f"complete_run() requires terminal status, got {status.value!r}. "
                f"Valid terminal statuses: {sorted(s.value for s in _TERMINAL_RUN_STATUSES)}"
            )

        with self._db.connection() as conn:
            conn.execute(
                update(runs_table)
                .where(runs_table.c.run_id == run_id)
                .values(
                    status=status.value,
                    completed_at=now(),
                    iterations=iterations,
                    rows_written=rows_written,
                    error=error,
                )
            )

        record = self.get_run(run_id)
        if record is None:
            raise LookupError(f"Run {run_id} not found after update")
        return record

    def get_run(self, run_id: str) -> RunRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(select(runs_table).where(runs_table.c.run_id == run_id)).fetchone()
        return None if row is None else self._load_run(row)

    def list_runs(self, *, pipeline: str | None = None, limit: int = 20) -> list[RunRecord]:
        """Recent runs, newest first."""
        query = select(runs_table).order_by(runs_table.c.started_at.desc()).limit(limit)
        if pipeline is not None:
            query = query.where(runs_table.c.pipeline == pipeline)
        with self._db.connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._load_run(row) for row in rows]

    def get_iterations(self, run_id: str) -> list[IterationRecord]:
        query = select(iterations_table).where(iterations_table.c.run_id == run_id).order_by(iterations_table.c.iteration)
        with self._db.connection() as conn:
            rows = conn.execute(query).fetchall()
        return [
            IterationRecord(
                run_id=row.run_id,
                iteration=row.iteration,
                eligible=row.eligible,
                rows_written=row.rows_written,
                rejected_retryable=row.rejected_retryable,
                terminal_failures=row.terminal_failures,
                elapsed_secs=row.elapsed_secs,
                recorded_at=row.recorded_at,
            )
            for row in rows
        ]

    @staticmethod
    def _load_run(row: Row[Any]) -> RunRecord:
        # Invalid enum values in our own tables crash; no silent coercion
        return RunRecord(
            run_id=row.run_id,
            pipeline=row.pipeline,
            kind=PipelineKind(row.kind),
            operation=row.operation,
            config_hash=row.config_hash,
            started_at=row.started_at,
            status=RunStatus(row.status),
            iterations=row.iterations,
            rows_written=row.rows_written,
            completed_at=row.completed_at,
            error=row.error,
        )
