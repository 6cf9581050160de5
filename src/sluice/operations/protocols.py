"""Operation backend protocol.

A backend performs one remote call for a batch of rows. Contract:
- Returns exactly one result mapping per input row, in input order.
- Each result carries the operation's status column.
- Transient failures (throttling, server errors, timeouts) are reported
  as retryable statuses on the affected rows, never raised.
- Permanent request rejections raise OperationRequestError.
- No retries: re-attempts emerge from the convergence loop re-selecting
  rows in a later iteration.
"""

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Self

    from sluice.contracts.config_values import OperationConfig
    from sluice.operations.catalogue import OperationSpec


@runtime_checkable
class OperationBackend(Protocol):
    """Protocol for remote operation backends.

    Example:
        class EchoBackend:
            name = "echo"

            @classmethod
            def from_options(cls, options):
                return cls()

            def invoke(self, operation, model, rows, config):
                return [{operation.status_column: ""} for _ in rows]

            def close(self):
                pass
    """

    name: str

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "Self":
        """Construct the backend from its settings options."""
        ...

    def invoke(
        self,
        operation: "OperationSpec",
        model: str,
        rows: Sequence[Mapping[str, Any]],
        config: "OperationConfig",
    ) -> list[dict[str, Any]]:
        """Apply ``operation`` to ``rows`` and return one result per row."""
        ...

    def close(self) -> None:
        """Release any held resources (connections, pools)."""
        ...
