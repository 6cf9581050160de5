"""Observability events for pipeline execution.

Emitted by the engine and consumed by CLI formatters for human-readable
or structured output.
"""

from dataclasses import dataclass

from sluice.contracts.enums import LoopState


@dataclass(frozen=True, slots=True)
class PipelineBootstrapped:
    """Emitted once per run after the output table is known to exist."""

    pipeline: str
    created: bool
    seeded_rows: int


@dataclass(frozen=True, slots=True)
class IterationCompleted:
    """Emitted after each iteration's merge is committed."""

    pipeline: str
    iteration: int
    eligible: int
    rows_written: int
    rejected_retryable: int
    terminal_failures: int
    elapsed_secs: float


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Emitted when the convergence loop reaches a terminal state."""

    pipeline: str
    state: LoopState
    iterations: int
    rows_written: int
    elapsed_secs: float
    run_id: str | None = None


@dataclass(frozen=True, slots=True)
class RunFailed:
    """Emitted when a run aborts with an exception."""

    pipeline: str
    error_type: str
    error_message: str
    run_id: str | None = None
