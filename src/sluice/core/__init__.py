"""Core infrastructure: Canonical JSON, Events, Logging, Warehouse, Ledger, Configuration.

Subpackages are imported explicitly (``from sluice.core.config import ...``);
only leaf utilities are re-exported here.
"""

from sluice.core.canonical import (
    CANONICAL_VERSION,
    canonical_json,
    normalize_for_json,
    stable_hash,
)
from sluice.core.events import EventBus, EventBusProtocol, NullEventBus
from sluice.core.logging import configure_logging, get_logger

__all__ = [
    "CANONICAL_VERSION",
    "EventBus",
    "EventBusProtocol",
    "NullEventBus",
    "canonical_json",
    "configure_logging",
    "get_logger",
    "normalize_for_json",
    "stable_hash",
]
