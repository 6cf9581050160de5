"""Run ledger: durable history of pipeline runs and iterations."""

from sluice.core.ledger.models import IterationRecord, RunRecord
from sluice.core.ledger.recorder import RunRecorder
from sluice.core.ledger.schema import iterations_table, metadata, runs_table

__all__ = [
    "IterationRecord",
    "RunRecord",
    "RunRecorder",
    "iterations_table",
    "metadata",
    "runs_table",
]
