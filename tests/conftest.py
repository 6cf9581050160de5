# tests/conftest.py
"""Shared test fixtures and helpers.

Fixtures build an in-memory SQLite warehouse, a MockClock, and the
deterministic ScriptedOperationBackend so that whole pipelines run
without network or wall-clock time.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings
from sqlalchemy import Column, Integer, MetaData, Table, Text, UniqueConstraint, insert, select, update

from sluice.core.dependencies import DependencyRegistry
from sluice.core.warehouse.database import WarehouseDB
from sluice.engine.clock import MockClock


@pytest.fixture
def db() -> Iterator[WarehouseDB]:
    """Fresh in-memory warehouse per test."""
    warehouse = WarehouseDB.in_memory()
    yield warehouse
    warehouse.close()


@pytest.fixture
def clock() -> MockClock:
    return MockClock()


@pytest.fixture
def registry() -> DependencyRegistry:
    return DependencyRegistry()


def create_articles(db: WarehouseDB, rows: Sequence[Mapping[str, Any]], name: str = "articles") -> Table:
    """Structured source: ``id`` key plus a ``body`` text column."""
    table = Table(
        name,
        MetaData(),
        Column("id", Text, primary_key=True),
        Column("body", Text),
    )
    with db.connection() as conn:
        table.create(conn)
        if rows:
            conn.execute(insert(table), [dict(row) for row in rows])
    return table


def create_objects(db: WarehouseDB, rows: Sequence[Mapping[str, Any]], name: str = "objects") -> Table:
    """Object table: ``uri`` key, ``updated`` freshness column, ``content_type``."""
    table = Table(
        name,
        MetaData(),
        Column("uri", Text, primary_key=True),
        Column("updated", Integer, nullable=False),
        Column("content_type", Text),
    )
    with db.connection() as conn:
        table.create(conn)
        if rows:
            conn.execute(insert(table), [dict(row) for row in rows])
    return table


def create_output(
    db: WarehouseDB,
    name: str,
    columns: Sequence[str],
    unique_keys: Sequence[str] = ("id",),
    types: Mapping[str, Any] | None = None,
) -> Table:
    """Pre-create an output table so bootstrap finds it (Text unless ``types`` says otherwise)."""
    types = types or {}
    table = Table(
        name,
        MetaData(),
        *(Column(column, types.get(column, Text), nullable=column not in unique_keys) for column in columns),
        UniqueConstraint(*unique_keys, name=f"uq_{name}_key"),
    )
    with db.connection() as conn:
        table.create(conn)
    return table


def touch(db: WarehouseDB, table: Table, key_column: str, key: Any, **values: Any) -> None:
    """Update one source row in place."""
    with db.connection() as conn:
        conn.execute(update(table).where(table.c[key_column] == key).values(**values))


def read_rows(db: WarehouseDB, name: str, order_by: str = "id") -> list[dict[str, Any]]:
    """All rows of a table as plain dicts, ordered by ``order_by``."""
    table = db.reflect_table(name)
    with db.connection() as conn:
        return [dict(row) for row in conn.execute(select(table).order_by(table.c[order_by])).mappings()]


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
