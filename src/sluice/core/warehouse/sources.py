"""Source relation resolution.

A pipeline source may be given as:
- a bare table name ("hacker_50k" or "raw.hacker_50k"), reflected from the DB
- SQL text ("SELECT *, CONCAT(...) AS prompt FROM hacker_50k")
- a SQLAlchemy Table or Select
- a callable taking a PublicationContext and returning any of the above

All forms resolve to a named subquery whose columns can be referenced by
the eligibility predicates.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import Select, Subquery, Table, column, select, text
from sqlalchemy.exc import SQLAlchemyError

from sluice.contracts.errors import SourceResolutionError

if TYPE_CHECKING:
    from sluice.core.dependencies import DependencyRegistry
    from sluice.core.warehouse.database import WarehouseDB

_TABLE_NAME = re.compile(r"^(?:(?P<schema>[A-Za-z_][A-Za-z0-9_]*)\.)?(?P<name>[A-Za-z_][A-Za-z0-9_]*)$")


@dataclass(frozen=True, slots=True)
class PublicationContext:
    """Context handed to callable source queries.

    Attributes:
        registry: Dependency registry used for name resolution
        output_name: Name of the output table being maintained
        is_incremental: False only on the bootstrap (first) run
    """

    registry: DependencyRegistry
    output_name: str
    is_incremental: bool = True

    def resolve(self, name: str) -> str:
        """Qualified storage name of a declared dependency."""
        return self.registry.resolve(name)

    def incremental(self) -> bool:
        return self.is_incremental

    def self_ref(self) -> str:
        """Storage name of the output table itself."""
        if self.registry.is_declared(self.output_name):
            return self.registry.resolve(self.output_name)
        return self.output_name

    def when(self, condition: bool, value: str, otherwise: str = "") -> str:
        return value if condition else otherwise


SourceRelation = str | Table | Select | Subquery
SourceQuery = SourceRelation | Callable[[PublicationContext], SourceRelation]


def resolve_source(
    db: WarehouseDB,
    source: SourceQuery,
    ctx: PublicationContext,
    *,
    alias: str = "src",
) -> Subquery:
    """Turn a source query into a named subquery.

    Raises:
        SourceResolutionError: If the source cannot be resolved
    """
    if callable(source) and not isinstance(source, Table | Select | Subquery):
        source = source(ctx)

    if isinstance(source, Subquery):
        return source
    if isinstance(source, Table):
        return select(source).subquery(alias)
    if isinstance(source, Select):
        return source.subquery(alias)
    if isinstance(source, str):
        stripped = source.strip().rstrip(";").strip()
        if not stripped:
            raise SourceResolutionError("Source query is empty")
        match = _TABLE_NAME.match(stripped)
        if match:
            return _table_relation(db, match.group("name"), match.group("schema"), ctx, alias)
        return _text_relation(db, stripped, alias)

    raise SourceResolutionError(f"Unsupported source type: {type(source).__name__}")


def _table_relation(db: WarehouseDB, name: str, schema: str | None, ctx: PublicationContext, alias: str) -> Subquery:
    # A declared dependency may carry its own schema qualifier
    if schema is None and ctx.registry.is_declared(name):
        schema = ctx.registry.get(name).schema
    if not db.has_table(name, schema=schema):
        qualified = f"{schema}.{name}" if schema else name
        raise SourceResolutionError(f"Source table '{qualified}' does not exist")
    table = db.reflect_table(name, schema=schema)
    return select(table).subquery(alias)


def _text_relation(db: WarehouseDB, query: str, alias: str) -> Subquery:
    """Wrap SQL text as a subquery, probing its column names with a zero-row query."""
    probe = text(f"SELECT * FROM ({query}) AS _sluice_probe WHERE 1 = 0")
    try:
        with db.connection() as conn:
            names = list(conn.execute(probe).keys())
    except SQLAlchemyError as e:
        raise SourceResolutionError(f"Source query failed to compile: {e}") from e
    if not names:
        raise SourceResolutionError("Source query returns no columns")
    return text(query).columns(*(column(name) for name in names)).subquery(alias)
