"""Pipeline bootstrapper: one-time output initialization.

Idempotent "create if absent":
1. Declare the source table and model, register the init_<output>
   operation and the incremental <output> table in the registry.
2. If the output table exists, reflect it and stop.
3. Otherwise invoke the operation on a small seed slice of the source,
   then create the table and insert the accepted seed rows in one
   transaction.

The seed slice keeps the very first run from launching a full-size batch
before the output schema exists. Any failure here is fatal.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    Subquery,
    Table,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.types import NullType, TypeEngine

from sluice.contracts.errors import BootstrapError
from sluice.contracts.results import BootstrapResult
from sluice.core.dependencies import DependencyRegistry
from sluice.core.warehouse.database import WarehouseDB
from sluice.core.warehouse.sources import PublicationContext, resolve_source
from sluice.engine.filters import AcceptFilter
from sluice.engine.invoker import BatchInvoker
from sluice.engine.merge import MergeWriter

if TYPE_CHECKING:
    from sluice.engine.pipeline import PipelineDefinition

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class BootstrappedOutput:
    """The bootstrap outcome plus the output table to merge into."""

    result: BootstrapResult
    table: Table


def infer_column_type(value: Any) -> TypeEngine[Any]:
    """Map a Python value to a column type (Text when unknown)."""
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return Boolean()
    if isinstance(value, int):
        return Integer()
    if isinstance(value, float):
        return Float()
    if isinstance(value, datetime):
        return DateTime(timezone=value.tzinfo is not None)
    if isinstance(value, date):
        return Date()
    if isinstance(value, Decimal):
        return Numeric()
    if isinstance(value, dict | list):
        return JSON()
    if isinstance(value, bytes | bytearray):
        return LargeBinary()
    return Text()


def _first_value(rows: Sequence[Mapping[str, Any]], column: str) -> Any:
    return next((row[column] for row in rows if row.get(column) is not None), None)


def init_operation_name(output_name: str) -> str:
    return f"init_{output_name}"


class PipelineBootstrapper:
    """Creates (or finds) the output table and registers dependencies."""

    def __init__(self, db: WarehouseDB, registry: DependencyRegistry) -> None:
        self._db = db
        self._registry = registry

    def register(self, definition: "PipelineDefinition") -> None:
        """Declare inputs and publish the output in the dependency registry."""
        dependencies: list[str] = []
        if definition.source_table:
            self._registry.declare(definition.source_table)
            dependencies.append(definition.source_table)
        self._registry.declare(definition.model)
        dependencies.append(definition.model)

        init_name = init_operation_name(definition.output_name)
        self._registry.declare_operation(init_name, dependencies)
        self._registry.publish(definition.output_name, unique_key=definition.unique_keys, dependencies=[init_name])

    def bootstrap(
        self,
        definition: "PipelineDefinition",
        source: Subquery | None,
        invoker: BatchInvoker,
        accept_filter: AcceptFilter,
    ) -> BootstrappedOutput:
        """Ensure the output table exists.

        Args:
            definition: Pipeline being bootstrapped
            source: Source relation for a non-incremental run, or None to
                resolve it here; only read when the table has to be created
            invoker: Invoker bound to the pipeline's operation and model
            accept_filter: Filter applied to the seed rows

        Raises:
            BootstrapError: If the output cannot be created or seeded
        """
        output_name = definition.output_name
        try:
            self.register(definition)

            if self._db.has_table(output_name):
                table = self._db.reflect_table(output_name)
                logger.debug("Output table exists, bootstrap skipped", output=output_name)
                return BootstrappedOutput(BootstrapResult(output_name, created=False), table)

            if source is None:
                ctx = PublicationContext(self._registry, output_name, is_incremental=False)
                source = resolve_source(self._db, definition.source, ctx)
            return self._create(definition, source, invoker, accept_filter)
        except BootstrapError:
            raise
        except Exception as e:
            raise BootstrapError(output_name, f"{type(e).__name__}: {e}") from e

    def _create(
        self,
        definition: "PipelineDefinition",
        source: Subquery,
        invoker: BatchInvoker,
        accept_filter: AcceptFilter,
    ) -> BootstrappedOutput:
        keys_present = [source.c[key].is_not(None) for key in definition.unique_keys]
        seed_query = (
            select(source)
            .where(*keys_present)
            .order_by(*(source.c[column] for column in definition.order_columns))
            .limit(definition.seed_limit)
        )
        with self._db.connection() as conn:
            seed_rows = [dict(row) for row in conn.execute(seed_query).mappings().all()]

        candidates = invoker.invoke(seed_rows)
        table = self._build_table(definition, source, candidates)

        with self._db.connection() as conn:
            table.create(conn)
            outcome = MergeWriter(self._db, table, definition.unique_keys, accept_filter).write(conn, candidates)

        logger.info(
            "Output table created",
            output=definition.output_name,
            columns=len(table.columns),
            seeded_rows=outcome.rows_written,
            rejected_retryable=outcome.rejected_retryable,
        )
        return BootstrappedOutput(
            BootstrapResult(definition.output_name, created=True, seeded_rows=outcome.rows_written),
            table,
        )

    def _build_table(
        self,
        definition: "PipelineDefinition",
        source: Subquery,
        candidates: Sequence[Mapping[str, Any]],
    ) -> Table:
        """Source columns, then observed result columns, then declared result/status columns.

        Column types come from the source, else from the first non-null
        observed value. A result column with no observed value (empty or
        all-retryable seed) takes the operation's declared payload type.
        """
        ordered: list[str] = list(source.c.keys())
        for row in candidates:
            ordered.extend(column for column in row if column not in ordered)
        operation = definition.operation
        ordered.extend(column for column in (operation.result_column, operation.status_column) if column not in ordered)

        columns = []
        for name in ordered:
            declared = source.c[name].type if name in source.c else NullType()
            if isinstance(declared, NullType):
                observed = _first_value(candidates, name)
                if observed is None and name == operation.result_column:
                    declared = JSON() if operation.json_result else Text()
                else:
                    declared = infer_column_type(observed)
            columns.append(Column(name, declared, nullable=name not in definition.unique_keys))

        return Table(
            definition.output_name,
            MetaData(),
            *columns,
            UniqueConstraint(*definition.unique_keys, name=f"uq_{definition.output_name}_key"),
        )
