"""Eligibility policies: which source rows still need (re)processing.

Two policies, selected by pipeline kind:

Identity-Retry (structured rows):
    eligible = key has no output row with a non-retryable status
    (never processed, or only a retryable result recorded)

Freshness-Scan (object rows):
    eligible = key absent from output
            OR freshness value > MAX(output freshness)
            OR output row for the key is older than the source row
            OR output row for the key carries a retryable status

The last two terms follow the resurface_retryable flag. A reprocess that
comes back retryable leaves the older output row in place, and once a
newer object has raised the high-water mark only the per-key comparison
still sees it.

Both exclude rows with a NULL in any key column; such rows cannot be
upserted by identity. Predicates are rendered by SQLAlchemy against the
resolved source subquery and the output table, so selection always sees
the output state committed by the previous iteration.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from sqlalchemy import ColumnElement, Connection, Select, Subquery, Table, and_, func, literal, not_, or_, select, true

from sluice.contracts.enums import PipelineKind
from sluice.contracts.results import EligibilitySet
from sluice.engine.filters import AcceptFilter


class EligibilityPolicy(Protocol):
    """Selects the rows eligible for the next iteration."""

    def select(self, conn: Connection, source: Subquery, output: Table, batch_cap: int) -> EligibilitySet:
        """Return at most ``batch_cap`` eligible rows (no cap when negative)."""
        ...


def _keys_present(source: Subquery, keys: Sequence[str]) -> list[ColumnElement[bool]]:
    return [source.c[key].is_not(None) for key in keys]


def _key_match(source: Subquery, output: Table, keys: Sequence[str]) -> ColumnElement[bool]:
    return and_(*(output.c[key] == source.c[key] for key in keys))


def _fetch(conn: Connection, stmt: Select[Any], batch_cap: int) -> EligibilitySet:
    if batch_cap >= 0:
        stmt = stmt.limit(batch_cap)
    rows = conn.execute(stmt).mappings().all()
    return EligibilitySet(tuple(dict(row) for row in rows))


class IdentityRetryPolicy:
    """Anti-join on the unique key, letting retryable output rows through."""

    def __init__(self, unique_keys: Sequence[str], accept_filter: AcceptFilter) -> None:
        if not unique_keys:
            raise ValueError("IdentityRetryPolicy requires at least one unique key")
        self.unique_keys = tuple(unique_keys)
        self.accept_filter = accept_filter

    def select(self, conn: Connection, source: Subquery, output: Table, batch_cap: int) -> EligibilitySet:
        settled = (
            select(literal(1))
            .select_from(output)
            .where(_key_match(source, output, self.unique_keys), self._settled_clause(output))
            .correlate(source)
            .exists()
        )

        stmt = (
            select(source)
            .where(*_keys_present(source, self.unique_keys), not_(settled))
            .order_by(*(source.c[key] for key in self.unique_keys))
        )
        return _fetch(conn, stmt, batch_cap)

    def _settled_clause(self, output: Table) -> ColumnElement[bool]:
        """True for output rows that must never be re-submitted."""
        status_column = self.accept_filter.status_column
        if status_column not in output.c:
            # No status recorded: every existing row is settled
            return true()
        status = output.c[status_column]
        return or_(status.is_(None), not_(self.accept_filter.retryable_clause(status)))


class FreshnessScanPolicy:
    """Absent-or-newer scan over a single key and a freshness column."""

    def __init__(
        self,
        unique_key: str,
        updated_column: str,
        accept_filter: AcceptFilter,
        *,
        resurface_retryable: bool = True,
    ) -> None:
        self.unique_key = unique_key
        self.updated_column = updated_column
        self.accept_filter = accept_filter
        self.resurface_retryable = resurface_retryable

    def select(self, conn: Connection, source: Subquery, output: Table, batch_cap: int) -> EligibilitySet:
        keys = (self.unique_key,)
        match = _key_match(source, output, keys)

        present = select(literal(1)).select_from(output).where(match).correlate(source).exists()
        high_water = select(func.max(output.c[self.updated_column])).scalar_subquery()
        conditions: list[ColumnElement[bool]] = [
            not_(present),
            source.c[self.updated_column] > high_water,
        ]

        if self.resurface_retryable:
            stale = output.c[self.updated_column] < source.c[self.updated_column]
            conditions.append(select(literal(1)).select_from(output).where(match, stale).correlate(source).exists())
            status_column = self.accept_filter.status_column
            if status_column in output.c:
                retryable = self.accept_filter.retryable_clause(output.c[status_column])
                conditions.append(select(literal(1)).select_from(output).where(match, retryable).correlate(source).exists())

        stmt = (
            select(source)
            .where(*_keys_present(source, keys), or_(*conditions))
            .order_by(source.c[self.updated_column].asc(), source.c[self.unique_key].asc())
        )
        return _fetch(conn, stmt, batch_cap)


def select_eligible(
    conn: Connection,
    source: Subquery,
    output: Table,
    policy: EligibilityPolicy,
    batch_cap: int,
) -> EligibilitySet:
    """Compute this iteration's eligibility set."""
    return policy.select(conn, source, output, batch_cap)


def policy_for(
    kind: PipelineKind,
    unique_keys: Sequence[str],
    accept_filter: AcceptFilter,
    *,
    updated_column: str = "updated",
    resurface_retryable: bool = True,
) -> EligibilityPolicy:
    """Pick the eligibility policy for a pipeline kind.

    Raises:
        ValueError: If an object pipeline is given other than one key
    """
    if kind is PipelineKind.STRUCTURED:
        return IdentityRetryPolicy(unique_keys, accept_filter)
    if len(unique_keys) != 1:
        raise ValueError(f"Object pipelines take exactly one unique key, got {list(unique_keys)}")
    return FreshnessScanPolicy(
        unique_keys[0],
        updated_column,
        accept_filter,
        resurface_retryable=resurface_retryable,
    )
