"""Remote operation catalogue and backends."""

from sluice.operations.catalogue import (
    OBJECT_DEFAULT_BATCH_SIZE,
    OPERATIONS,
    STRUCTURED_DEFAULT_BATCH_SIZE,
    OperationSpec,
    get_operation,
    list_operations,
)
from sluice.operations.hookspecs import hookimpl
from sluice.operations.manager import BackendManager
from sluice.operations.protocols import OperationBackend

__all__ = [
    "OBJECT_DEFAULT_BATCH_SIZE",
    "OPERATIONS",
    "STRUCTURED_DEFAULT_BATCH_SIZE",
    "BackendManager",
    "OperationBackend",
    "OperationSpec",
    "get_operation",
    "hookimpl",
    "list_operations",
]
