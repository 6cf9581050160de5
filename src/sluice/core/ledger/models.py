"""Records read back from the run ledger."""

from dataclasses import dataclass
from datetime import datetime

from sluice.contracts.enums import PipelineKind, RunStatus


@dataclass(frozen=True, slots=True)
class RunRecord:
    """A single recorded pipeline run."""

    run_id: str
    pipeline: str
    kind: PipelineKind
    operation: str
    config_hash: str
    started_at: datetime
    status: RunStatus
    iterations: int = 0
    rows_written: int = 0
    completed_at: datetime | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class IterationRecord:
    """One recorded iteration of a run."""

    run_id: str
    iteration: int
    eligible: int
    rows_written: int
    rejected_retryable: int
    terminal_failures: int
    elapsed_secs: float
    recorded_at: datetime
