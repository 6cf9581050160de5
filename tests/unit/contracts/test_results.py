# tests/unit/contracts/test_results.py
"""Tests for engine result types, enums, and the status vocabulary."""

import pytest


class TestLoopState:
    def test_terminal_states(self) -> None:
        from sluice.contracts.enums import LoopState

        assert LoopState.CONVERGED.is_terminal
        assert LoopState.TIMED_OUT.is_terminal
        assert not LoopState.INIT.is_terminal
        assert not LoopState.ITERATING.is_terminal


class TestRunResult:
    """RunResult only describes finished loops."""

    def test_requires_terminal_state(self) -> None:
        from sluice.contracts.enums import LoopState
        from sluice.contracts.results import RunResult

        with pytest.raises(ValueError, match="terminal state"):
            RunResult(pipeline="out", state=LoopState.ITERATING)

    def test_rows_written_sums_iterations(self) -> None:
        from sluice.contracts.enums import LoopState
        from sluice.contracts.results import IterationResult, RunResult

        iterations = (
            IterationResult(1, eligible=2, rows_written=1, rejected_retryable=1, terminal_failures=0, elapsed_secs=1.0),
            IterationResult(2, eligible=2, rows_written=2, rejected_retryable=0, terminal_failures=0, elapsed_secs=2.0),
            IterationResult(3, eligible=0, rows_written=0, rejected_retryable=0, terminal_failures=0, elapsed_secs=2.5),
        )
        result = RunResult(pipeline="out", state=LoopState.CONVERGED, iterations=iterations)

        assert result.rows_written == 3
        assert result.converged
        assert not result.timed_out

    def test_timed_out_flag(self) -> None:
        from sluice.contracts.enums import LoopState
        from sluice.contracts.results import RunResult

        result = RunResult(pipeline="out", state=LoopState.TIMED_OUT)
        assert result.timed_out
        assert not result.converged


class TestEligibilitySet:
    def test_empty_set_is_falsy(self) -> None:
        from sluice.contracts.results import EligibilitySet

        assert not EligibilitySet()
        assert len(EligibilitySet()) == 0

    def test_iterates_rows(self) -> None:
        from sluice.contracts.results import EligibilitySet

        rows = ({"id": "A"}, {"id": "B"})
        eligible = EligibilitySet(rows)
        assert eligible
        assert [row["id"] for row in eligible] == ["A", "B"]


class TestMergeOutcome:
    def test_empty(self) -> None:
        from sluice.contracts.results import MergeOutcome

        outcome = MergeOutcome.empty()
        assert outcome.rows_written == 0
        assert outcome.rejected_retryable == 0
        assert outcome.terminal_failures == 0


class TestRetryableStatus:
    def test_status_carries_prefix(self) -> None:
        from sluice.contracts.status import RETRYABLE_ERROR_PREFIX, retryable_status

        status = retryable_status("quota exceeded")
        assert status.startswith(RETRYABLE_ERROR_PREFIX)
        assert status == "A retryable error occurred: quota exceeded"


class TestErrors:
    def test_unknown_operation_message_is_not_quoted(self) -> None:
        """KeyError normally repr()s its message; ours reads cleanly."""
        from sluice.contracts.errors import UnknownOperationError

        error = UnknownOperationError("summarize", ["translate", "generate_text"])
        assert str(error) == "Unknown operation 'summarize'. Available: generate_text, translate"
        assert isinstance(error, KeyError)

    def test_contract_error_reports_row_index(self) -> None:
        from sluice.contracts.errors import OperationContractError

        error = OperationContractError("translate", "missing status", row_index=3)
        assert "result row 3" in str(error)
        assert error.row_index == 3

    def test_request_error_includes_status_code(self) -> None:
        from sluice.contracts.errors import OperationRequestError

        error = OperationRequestError("generate_text", 403, "forbidden")
        assert "HTTP 403" in str(error)
        assert error.status_code == 403

    def test_cycle_error_renders_path(self) -> None:
        from sluice.contracts.errors import DependencyCycleError

        error = DependencyCycleError(["a", "b", "a"])
        assert "a -> b -> a" in str(error)
