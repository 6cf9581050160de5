"""Test infrastructure for Sluice pipelines.

Usage:
    from sluice.testing import ScriptedOperationBackend
"""

from sluice.testing.scripted import SUCCESS_STATUS, ScriptedCall, ScriptedOperationBackend

__all__ = [
    "SUCCESS_STATUS",
    "ScriptedCall",
    "ScriptedOperationBackend",
]
