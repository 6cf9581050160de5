"""
Sluice: incremental, quota-aware ML reconciliation for warehouse tables.

Applies a remote inference operation to the rows of a source relation in
bounded batches, upserts accepted results into an output table, and keeps
retrying transient failures until the output converges.
"""

__version__ = "0.1.0"
