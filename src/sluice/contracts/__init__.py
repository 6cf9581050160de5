"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes live in sluice.core.config and are not re-exported here.

Import patterns:
    from sluice.contracts import LoopState, RunResult, OperationConfig
    from sluice.core.config import SluiceSettings
"""

from sluice.contracts.config_values import (
    Array,
    ConfigValue,
    JsonDocument,
    OperationConfig,
    Scalar,
    Struct,
    json_document,
    to_config_value,
)
from sluice.contracts.enums import (
    DependencyKind,
    LoopState,
    PipelineKind,
    RowDisposition,
    RunStatus,
)
from sluice.contracts.errors import (
    BootstrapError,
    ConfigValueError,
    DependencyCycleError,
    OperationContractError,
    OperationRequestError,
    SourceResolutionError,
    UndeclaredDependencyError,
    UnknownOperationError,
)
from sluice.contracts.events import (
    IterationCompleted,
    PipelineBootstrapped,
    RunFailed,
    RunSummary,
)
from sluice.contracts.results import (
    BootstrapResult,
    EligibilitySet,
    IterationResult,
    MergeOutcome,
    RunResult,
)
from sluice.contracts.status import (
    RETRYABLE_ERROR_PREFIX,
    retryable_status,
)

__all__ = [
    "RETRYABLE_ERROR_PREFIX",
    "Array",
    "BootstrapError",
    "BootstrapResult",
    "ConfigValue",
    "ConfigValueError",
    "DependencyCycleError",
    "DependencyKind",
    "EligibilitySet",
    "IterationCompleted",
    "IterationResult",
    "JsonDocument",
    "LoopState",
    "MergeOutcome",
    "OperationConfig",
    "OperationContractError",
    "OperationRequestError",
    "PipelineBootstrapped",
    "PipelineKind",
    "RowDisposition",
    "RunFailed",
    "RunResult",
    "RunStatus",
    "RunSummary",
    "Scalar",
    "SourceResolutionError",
    "Struct",
    "UndeclaredDependencyError",
    "UnknownOperationError",
    "json_document",
    "retryable_status",
    "to_config_value",
]
