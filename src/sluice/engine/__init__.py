"""Reconciliation engine: eligibility, invocation, merge, bootstrap, and the convergence loop.

Usage:
    from sluice.engine import PipelineDefinition, PipelineRuntime, ReconciliationPipeline

    runtime = PipelineRuntime(db=WarehouseDB.in_memory(), backend=backend)
    result = ReconciliationPipeline(runtime).run(definition)
"""

from sluice.engine.bootstrap import BootstrappedOutput, PipelineBootstrapper, infer_column_type, init_operation_name
from sluice.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from sluice.engine.controller import ConvergenceLoop
from sluice.engine.eligibility import (
    EligibilityPolicy,
    FreshnessScanPolicy,
    IdentityRetryPolicy,
    policy_for,
    select_eligible,
)
from sluice.engine.filters import AcceptFilter, RetryableErrorFilter, retryable_error_filter
from sluice.engine.invoker import BatchInvoker
from sluice.engine.merge import MergeWriter
from sluice.engine.pipeline import (
    DEFAULT_BATCH_DURATION_SECS,
    DEFAULT_SEED_LIMIT,
    PipelineDefinition,
    PipelineRuntime,
    ReconciliationPipeline,
)

__all__ = [
    "DEFAULT_BATCH_DURATION_SECS",
    "DEFAULT_CLOCK",
    "DEFAULT_SEED_LIMIT",
    "AcceptFilter",
    "BatchInvoker",
    "BootstrappedOutput",
    "Clock",
    "ConvergenceLoop",
    "EligibilityPolicy",
    "FreshnessScanPolicy",
    "IdentityRetryPolicy",
    "MergeWriter",
    "MockClock",
    "PipelineBootstrapper",
    "PipelineDefinition",
    "PipelineRuntime",
    "ReconciliationPipeline",
    "RetryableErrorFilter",
    "SystemClock",
    "infer_column_type",
    "init_operation_name",
    "policy_for",
    "retryable_error_filter",
    "select_eligible",
]
