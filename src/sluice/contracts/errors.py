"""Exceptions raised across subsystem boundaries.

Row-level outcomes (retryable or terminal) are NOT exceptions. They travel
through the output table as data and are recovered by the next iteration's
eligibility filter. Only the failures below abort a run.
"""

from typing import Any


class BootstrapError(Exception):
    """Raised when the output table cannot be created or seeded.

    Fatal: nothing has been merged yet, so there is no partial state to
    reconcile. The original cause is chained via ``__cause__``.
    """

    def __init__(self, output_name: str, message: str) -> None:
        self.output_name = output_name
        super().__init__(f"Bootstrap of '{output_name}' failed: {message}")


class OperationContractError(Exception):
    """Raised when an operation backend returns results that break its contract.

    Contract: exactly one result row per input row, each carrying the
    operation's status column and non-null unique key columns.
    """

    def __init__(self, operation: str, message: str, *, row_index: int | None = None) -> None:
        self.operation = operation
        self.row_index = row_index
        location = f" (result row {row_index})" if row_index is not None else ""
        super().__init__(f"Operation '{operation}' violated its result contract{location}: {message}")


class OperationRequestError(Exception):
    """Raised when the remote operation rejects a whole request permanently.

    Covers authentication, permission, and malformed-request rejections.
    Throttling and server-side errors are NOT raised; they become
    retryable row statuses instead.
    """

    def __init__(self, operation: str, status_code: int | None, message: str) -> None:
        self.operation = operation
        self.status_code = status_code
        code = f"HTTP {status_code}: " if status_code is not None else ""
        super().__init__(f"Operation '{operation}' request rejected: {code}{message}")


class UnknownOperationError(KeyError):
    """Raised when an operation name is not in the catalogue."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(f"Unknown operation '{name}'. Available: {', '.join(sorted(available))}")

    def __str__(self) -> str:
        return str(self.args[0])


class UndeclaredDependencyError(LookupError):
    """Raised when resolving a name that was never declared or published."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"'{name}' is not declared. Declare it as a dependency before resolving it.")


class DependencyCycleError(Exception):
    """Raised when declared dependencies form a cycle."""

    def __init__(self, cycle: list[Any]) -> None:
        self.cycle = cycle
        path = " -> ".join(str(node) for node in cycle)
        super().__init__(f"Dependency cycle detected: {path}")


class SourceResolutionError(Exception):
    """Raised when a source query cannot be turned into a selectable relation."""


class ConfigValueError(ValueError):
    """Raised when an operation config value cannot be represented."""
