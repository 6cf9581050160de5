"""Batch invoker: one call of the remote operation per iteration.

Pure pass-through to the operation backend. No retries happen here;
rows that come back retryable are re-selected by a later iteration.
The invoker never touches the source or output tables.
"""

from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from sluice.contracts.config_values import OperationConfig
from sluice.contracts.errors import OperationContractError
from sluice.core.canonical import normalize_for_json
from sluice.operations.catalogue import OperationSpec
from sluice.operations.protocols import OperationBackend

logger = structlog.get_logger(__name__)


class BatchInvoker:
    """Applies a bound operation and model to batches of eligible rows.

    Each candidate row is the source row with the operation's result
    columns appended. Source columns win over same-named result columns,
    except the operation's own result and status columns.

    Example:
        invoker = BatchInvoker(backend, get_operation("translate"), "models.nmt", config, ["id"])
        candidates = invoker.invoke(eligible.rows)
    """

    def __init__(
        self,
        backend: OperationBackend,
        operation: OperationSpec,
        model: str,
        config: OperationConfig,
        unique_keys: Sequence[str],
    ) -> None:
        self._backend = backend
        self._operation = operation
        self._model = model
        self._config = config
        self._unique_keys = tuple(unique_keys)
        self._owned_columns = frozenset({operation.result_column, operation.status_column})

    @property
    def operation(self) -> OperationSpec:
        return self._operation

    @property
    def model(self) -> str:
        return self._model

    def invoke(self, rows: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Run the operation on ``rows`` and return one candidate row per input row.

        Raises:
            OperationContractError: If the backend breaks its result contract
        """
        if not rows:
            return []

        # Backends get copies; the eligibility set stays untouched
        submitted = [dict(row) for row in rows]
        results = self._backend.invoke(self._operation, self._model, submitted, self._config)

        if len(results) != len(rows):
            raise OperationContractError(
                self._operation.name,
                f"expected {len(rows)} result rows, got {len(results)}",
            )

        candidates = [self._combine(index, row, result) for index, (row, result) in enumerate(zip(rows, results, strict=True))]
        logger.debug(
            "Operation batch invoked",
            operation=self._operation.name,
            model=self._model,
            rows=len(candidates),
        )
        return candidates

    def _combine(self, index: int, row: Mapping[str, Any], result: Mapping[str, Any]) -> dict[str, Any]:
        operation = self._operation.name
        if self._operation.status_column not in result:
            raise OperationContractError(operation, f"missing status column '{self._operation.status_column}'", row_index=index)

        for key in self._unique_keys:
            if key in result and normalize_for_json(result[key]) != normalize_for_json(row.get(key)):
                raise OperationContractError(
                    operation,
                    f"result key {key}={result[key]!r} does not match input {row.get(key)!r}",
                    row_index=index,
                )

        candidate = dict(row)
        for column, value in result.items():
            if column not in candidate or column in self._owned_columns:
                candidate[column] = value

        for key in self._unique_keys:
            if candidate.get(key) is None:
                raise OperationContractError(operation, f"unique key column '{key}' is missing or NULL", row_index=index)
        return candidate
