"""Result types produced by the reconciliation engine."""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from sluice.contracts.enums import LoopState


@dataclass(frozen=True, slots=True)
class EligibilitySet:
    """Rows selected for (re)processing in one iteration.

    Ephemeral: recomputed from source and output state every iteration
    and never persisted.
    """

    rows: tuple[Mapping[str, Any], ...] = ()

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Mapping[str, Any]]:
        return iter(self.rows)

    def __bool__(self) -> bool:
        return bool(self.rows)


@dataclass(frozen=True, slots=True)
class MergeOutcome:
    """What one merge call did to the output table.

    rows_written counts upserted rows (accepted, de-duplicated by key).
    terminal_failures is the subset of rows_written carrying a terminal
    error status. rejected_retryable rows were dropped by the accept filter.
    """

    rows_written: int
    rejected_retryable: int = 0
    terminal_failures: int = 0

    @classmethod
    def empty(cls) -> "MergeOutcome":
        return cls(rows_written=0)


@dataclass(frozen=True, slots=True)
class IterationResult:
    """One pass of select -> invoke -> merge."""

    iteration: int
    eligible: int
    rows_written: int
    rejected_retryable: int
    terminal_failures: int
    elapsed_secs: float


@dataclass(frozen=True, slots=True)
class BootstrapResult:
    """Outcome of the one-time output initialization.

    Attributes:
        output_name: Name of the output table
        created: True if this call created the table, False if it existed
        seeded_rows: Accepted rows inserted while creating the table
    """

    output_name: str
    created: bool
    seeded_rows: int = 0


@dataclass(frozen=True)
class RunResult:
    """Result of one convergence loop run.

    Both CONVERGED and TIMED_OUT are successful. A TIMED_OUT run is
    resumed by the next scheduled invocation without duplicate work.
    """

    pipeline: str
    state: LoopState
    iterations: tuple[IterationResult, ...] = field(default_factory=tuple)
    elapsed_secs: float = 0.0
    single_pass: bool = False
    run_id: str | None = None
    bootstrap: BootstrapResult | None = None

    def __post_init__(self) -> None:
        if not self.state.is_terminal:
            raise ValueError(f"RunResult requires a terminal state, got {self.state.value!r}")

    @property
    def rows_written(self) -> int:
        return sum(it.rows_written for it in self.iterations)

    @property
    def converged(self) -> bool:
        return self.state is LoopState.CONVERGED

    @property
    def timed_out(self) -> bool:
        return self.state is LoopState.TIMED_OUT
