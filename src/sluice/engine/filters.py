"""Accept filters: which result rows may be written to the output table.

An accept filter rejects rows still reporting a transient failure. The
same classification drives the eligibility predicates, so both the
Python-side check (accepts) and the SQL-side check (retryable_clause)
must agree on what "retryable" means.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import ColumnElement, and_, func

from sluice.contracts.enums import RowDisposition
from sluice.contracts.status import RETRYABLE_ERROR_PREFIX


class AcceptFilter(Protocol):
    """Protocol for accept filters.

    status_column names the column the filter inspects on both candidate
    rows and the output table.
    """

    status_column: str

    def classify(self, status: Any) -> RowDisposition: ...

    def accepts(self, row: Mapping[str, Any]) -> bool: ...

    def retryable_clause(self, column: ColumnElement[Any]) -> ColumnElement[bool]: ...


@dataclass(frozen=True, slots=True)
class RetryableErrorFilter:
    """Rejects rows whose status starts with the retryable-error prefix.

    NULL and empty statuses count as success. Any other status is a
    terminal failure and IS accepted, so the row is written once and
    never re-attempted.
    """

    status_column: str
    prefix: str = RETRYABLE_ERROR_PREFIX

    def classify(self, status: Any) -> RowDisposition:
        if status is None or status == "":
            return RowDisposition.SUCCESS
        if str(status).startswith(self.prefix):
            return RowDisposition.RETRYABLE
        return RowDisposition.TERMINAL_FAILURE

    def is_retryable(self, row: Mapping[str, Any]) -> bool:
        return self.classify(row.get(self.status_column)) is RowDisposition.RETRYABLE

    def accepts(self, row: Mapping[str, Any]) -> bool:
        return not self.is_retryable(row)

    def retryable_clause(self, column: ColumnElement[Any]) -> ColumnElement[bool]:
        """SQL predicate true for retryable statuses.

        LIKE narrows the scan; the substring comparison keeps the match
        case-sensitive on backends whose LIKE folds case (SQLite).
        """
        return and_(
            column.startswith(self.prefix, autoescape=True),
            func.substr(column, 1, len(self.prefix)) == self.prefix,
        )


def retryable_error_filter(status_column: str) -> RetryableErrorFilter:
    """Accept filter for an operation's ``ml_<operation>_status`` column."""
    return RetryableErrorFilter(status_column=status_column)
