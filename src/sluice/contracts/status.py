"""Row status vocabulary shared by operation backends and the engine.

A result row's status column is the only signal of how the remote
operation fared for that row:
- NULL or empty: success
- starts with RETRYABLE_ERROR_PREFIX: transient failure, re-attempted later
- anything else: terminal failure, written once and never re-attempted
"""

RETRYABLE_ERROR_PREFIX = "A retryable error occurred:"


def retryable_status(reason: str) -> str:
    """Build a status value the engine classifies as retryable."""
    return f"{RETRYABLE_ERROR_PREFIX} {reason}"

