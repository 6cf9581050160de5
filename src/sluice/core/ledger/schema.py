"""SQLAlchemy table definitions for the run ledger.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

# Shared metadata for all ledger tables
metadata = MetaData()

runs_table = Table(
    "sluice_runs",
    metadata,
    Column("run_id", String(64), primary_key=True),
    Column("pipeline", String(256), nullable=False),
    Column("kind", String(32), nullable=False),
    Column("operation", String(64), nullable=False),
    Column("config_hash", String(64), nullable=False),
    Column("settings_json", Text, nullable=False),
    Column("canonical_version", String(64), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("status", String(32), nullable=False),
    Column("iterations", Integer, nullable=False, default=0),
    Column("rows_written", Integer, nullable=False, default=0),
    Column("error", Text),
)

Index("ix_sluice_runs_pipeline_started", runs_table.c.pipeline, runs_table.c.started_at)

iterations_table = Table(
    "sluice_iterations",
    metadata,
    Column("run_id", String(64), ForeignKey("sluice_runs.run_id"), nullable=False),
    Column("iteration", Integer, nullable=False),
    Column("eligible", Integer, nullable=False),
    Column("rows_written", Integer, nullable=False),
    Column("rejected_retryable", Integer, nullable=False),
    Column("terminal_failures", Integer, nullable=False),
    Column("elapsed_secs", Float, nullable=False),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint("run_id", "iteration"),
)
