# tests/unit/operations/test_manager.py
"""Tests for BackendManager plugin registration."""

from collections.abc import Mapping, Sequence
from typing import Any

import pytest


class EchoBackend:
    name = "echo"

    def __init__(self, options: Mapping[str, Any]) -> None:
        self.options = dict(options)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "EchoBackend":
        return cls(options)

    def invoke(self, operation: Any, model: str, rows: Sequence[Mapping[str, Any]], config: Any) -> list[dict[str, Any]]:
        return [{operation.status_column: ""} for _ in rows]

    def close(self) -> None:
        pass


class TestBackendManager:
    def test_builtin_backends(self) -> None:
        from sluice.operations.http import HTTPOperationBackend
        from sluice.operations.manager import BackendManager
        from sluice.testing.scripted import ScriptedOperationBackend

        manager = BackendManager()
        manager.register_builtin_backends()

        assert manager.get_backend_by_name("http") is HTTPOperationBackend
        assert manager.get_backend_by_name("scripted") is ScriptedOperationBackend
        assert manager.get_backend_by_name("missing") is None
        assert len(manager.get_backends()) == 2

    def test_register_third_party_plugin(self) -> None:
        from sluice.operations.hookspecs import hookimpl
        from sluice.operations.manager import BackendManager
        from sluice.operations.protocols import OperationBackend

        class EchoPlugin:
            @hookimpl
            def sluice_get_backends(self) -> list[type]:
                return [EchoBackend]

        manager = BackendManager()
        manager.register(EchoPlugin())

        backend = manager.create_backend("echo", {"region": "eu"})

        assert isinstance(backend, EchoBackend)
        assert isinstance(backend, OperationBackend)
        assert backend.options == {"region": "eu"}

    def test_duplicate_backend_names_rejected(self) -> None:
        from sluice.operations.hookspecs import hookimpl
        from sluice.operations.manager import BackendManager

        class ShadowPlugin:
            @hookimpl
            def sluice_get_backends(self) -> list[type]:
                class Shadow(EchoBackend):
                    name = "http"

                return [Shadow]

        manager = BackendManager()
        manager.register_builtin_backends()

        with pytest.raises(ValueError, match="Duplicate backend name: 'http'"):
            manager.register(ShadowPlugin())

    def test_create_unknown_backend(self) -> None:
        from sluice.operations.manager import BackendManager

        manager = BackendManager()
        manager.register_builtin_backends()

        with pytest.raises(ValueError, match="Unknown backend 'grpc'. Available: http, scripted"):
            manager.create_backend("grpc")

    def test_create_scripted_backend_from_options(self) -> None:
        from sluice.operations.manager import BackendManager
        from sluice.testing.scripted import ScriptedOperationBackend

        manager = BackendManager()
        manager.register_builtin_backends()

        backend = manager.create_backend("scripted", {"key_columns": ["uri"], "seed": 7})

        assert isinstance(backend, ScriptedOperationBackend)
        assert backend.key_of({"uri": "gs://b/x"}) == "gs://b/x"
