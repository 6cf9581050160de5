"""Status codes, states, and kinds shared across subsystem boundaries."""

from enum import StrEnum


class PipelineKind(StrEnum):
    """Which eligibility policy a pipeline uses.

    STRUCTURED: Identity-Retry over one or more key columns.
    OBJECT: Freshness-Scan over a uri-like key and an updated timestamp.
    """

    STRUCTURED = "structured"
    OBJECT = "object"


class LoopState(StrEnum):
    """Convergence loop state machine.

    INIT -> ITERATING -> {CONVERGED, TIMED_OUT}

    Both terminal states are successful outcomes. TIMED_OUT leaves the
    output partially reconciled for the next scheduled run to resume.
    """

    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopState.CONVERGED, LoopState.TIMED_OUT)


class RunStatus(StrEnum):
    """Status of a recorded run.

    Stored in the ledger (sluice_runs.status).
    """

    RUNNING = "running"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class RowDisposition(StrEnum):
    """Classification of a single result row's status column."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL_FAILURE = "terminal_failure"


class DependencyKind(StrEnum):
    """Kind of node in the dependency registry.

    DECLARATION: External relation or model we read from but do not produce.
    OPERATION: One-off statement (the init_<output> bootstrap).
    INCREMENTAL: Output table maintained by merge upserts.
    """

    DECLARATION = "declaration"
    OPERATION = "operation"
    INCREMENTAL = "incremental"
