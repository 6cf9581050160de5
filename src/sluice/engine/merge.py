"""Merge writer: upserts accepted candidate rows into the output table.

Upsert is delete-by-key then insert, inside ONE transaction. A
concurrent reader sees either the previous state or the fully merged
batch, never a half-written one, and a failure leaves the output in its
last committed state.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import structlog
from sqlalchemy import JSON, ColumnElement, Connection, Table, delete, insert, tuple_

from sluice.contracts.enums import RowDisposition
from sluice.contracts.results import MergeOutcome
from sluice.core.canonical import canonical_json
from sluice.core.warehouse.database import WarehouseDB
from sluice.engine.filters import AcceptFilter

logger = structlog.get_logger(__name__)

# Keys per DELETE statement; stays under SQLite's bound parameter limit
_DELETE_CHUNK_SIZE = 500


class MergeWriter:
    """Writes accepted rows to ``output`` keyed by ``unique_keys``.

    - Retryable rows are rejected by the accept filter.
    - Terminal failures ARE written, carrying their status, so they are
      never re-attempted.
    - Duplicate keys within one batch collapse to the last candidate.
    - Candidate columns unknown to the output table are dropped.
    - Dict and list values bound for a non-JSON column are stored as
      canonical JSON text.
    """

    def __init__(
        self,
        db: WarehouseDB,
        output: Table,
        unique_keys: Sequence[str],
        accept_filter: AcceptFilter,
    ) -> None:
        missing = [key for key in unique_keys if key not in output.c]
        if missing:
            raise ValueError(f"Output table '{output.name}' lacks unique key column(s) {missing}")
        self._db = db
        self._output = output
        self._unique_keys = tuple(unique_keys)
        self._accept_filter = accept_filter
        self._columns = tuple(output.c.keys())
        self._scalar_columns = frozenset(column.name for column in output.columns if not isinstance(column.type, JSON))

    @property
    def output(self) -> Table:
        return self._output

    def merge(self, candidates: Sequence[Mapping[str, Any]]) -> MergeOutcome:
        """Upsert accepted candidates in a single transaction."""
        with self._db.connection() as conn:
            return self.write(conn, candidates)

    def write(self, conn: Connection, candidates: Sequence[Mapping[str, Any]]) -> MergeOutcome:
        """Upsert accepted candidates using the caller's transaction."""
        accepted: dict[tuple[Any, ...], dict[str, Any]] = {}
        dispositions: dict[tuple[Any, ...], RowDisposition] = {}
        rejected = 0
        dropped: set[str] = set()

        for row in candidates:
            disposition = self._accept_filter.classify(row.get(self._accept_filter.status_column))
            if disposition is RowDisposition.RETRYABLE:
                rejected += 1
                continue
            key = tuple(row[column] for column in self._unique_keys)
            # Re-insert so the surviving row keeps the position of its last occurrence
            accepted.pop(key, None)
            accepted[key] = {column: self._bind(column, row.get(column)) for column in self._columns}
            dispositions[key] = disposition
            dropped.update(column for column in row if column not in self._columns)

        if dropped:
            logger.warning(
                "Dropping result columns unknown to output table",
                output=self._output.name,
                columns=sorted(dropped),
            )

        if not accepted:
            return MergeOutcome(rows_written=0, rejected_retryable=rejected)

        self._delete_keys(conn, accepted.keys())
        conn.execute(insert(self._output), list(accepted.values()))

        terminal = sum(1 for disposition in dispositions.values() if disposition is RowDisposition.TERMINAL_FAILURE)
        return MergeOutcome(rows_written=len(accepted), rejected_retryable=rejected, terminal_failures=terminal)

    def _bind(self, column: str, value: Any) -> Any:
        if isinstance(value, dict | list) and column in self._scalar_columns:
            return canonical_json(value)
        return value

    def _delete_keys(self, conn: Connection, keys: Iterable[tuple[Any, ...]]) -> None:
        pending = list(keys)
        for start in range(0, len(pending), _DELETE_CHUNK_SIZE):
            chunk = pending[start : start + _DELETE_CHUNK_SIZE]
            conn.execute(delete(self._output).where(self._key_in(chunk)))

    def _key_in(self, keys: list[tuple[Any, ...]]) -> ColumnElement[bool]:
        if len(self._unique_keys) == 1:
            return self._output.c[self._unique_keys[0]].in_([key[0] for key in keys])
        columns = [self._output.c[column] for column in self._unique_keys]
        return tuple_(*columns).in_(keys)
