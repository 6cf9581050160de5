"""Warehouse access: connection management and source relation resolution."""

from sluice.core.warehouse.database import WarehouseDB
from sluice.core.warehouse.sources import (
    PublicationContext,
    SourceQuery,
    SourceRelation,
    resolve_source,
)

__all__ = [
    "PublicationContext",
    "SourceQuery",
    "SourceRelation",
    "WarehouseDB",
    "resolve_source",
]
