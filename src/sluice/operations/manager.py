"""Backend manager for discovery, registration, and lookup.

Uses pluggy for hook-based backend registration.
"""

from collections.abc import Mapping
from typing import Any

import pluggy

from sluice.operations.hookspecs import PROJECT_NAME, SluiceBackendSpec, hookimpl
from sluice.operations.protocols import OperationBackend


class BuiltinBackends:
    """Hook implementation registering the backends shipped with Sluice."""

    @hookimpl
    def sluice_get_backends(self) -> list[type[OperationBackend]]:
        from sluice.operations.http import HTTPOperationBackend
        from sluice.testing.scripted import ScriptedOperationBackend

        return [HTTPOperationBackend, ScriptedOperationBackend]


class BackendManager:
    """Manages operation backend registration and lookup.

    Usage:
        manager = BackendManager()
        manager.register_builtin_backends()

        backend = manager.create_backend("http", {"base_url": "https://ml.example.com"})
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(SluiceBackendSpec)
        self._backends: dict[str, type[OperationBackend]] = {}

    def register_builtin_backends(self) -> None:
        self.register(BuiltinBackends())

    def load_entrypoints(self) -> int:
        """Register backends advertised under the ``sluice`` entry point group.

        Returns:
            Number of plugins loaded
        """
        count = self._pm.load_setuptools_entrypoints(PROJECT_NAME)
        self._refresh_cache()
        return count

    def register(self, plugin: Any) -> None:
        """Register a plugin implementing ``sluice_get_backends``."""
        self._pm.register(plugin)
        self._refresh_cache()

    def _refresh_cache(self) -> None:
        """Rebuild the name lookup from all registered hooks.

        Raises:
            ValueError: If two plugins provide a backend with the same name
        """
        backends: dict[str, type[OperationBackend]] = {}
        for provided in self._pm.hook.sluice_get_backends():
            for cls in provided:
                name = cls.name
                if name in backends:
                    raise ValueError(f"Duplicate backend name: '{name}'. Already registered by {backends[name].__name__}")
                backends[name] = cls
        self._backends = backends

    def get_backends(self) -> list[type[OperationBackend]]:
        return list(self._backends.values())

    def get_backend_by_name(self, name: str) -> type[OperationBackend] | None:
        return self._backends.get(name)

    def create_backend(self, name: str, options: Mapping[str, Any] | None = None) -> OperationBackend:
        """Instantiate a registered backend from its options.

        Raises:
            ValueError: If no backend with that name is registered
        """
        cls = self.get_backend_by_name(name)
        if cls is None:
            available = ", ".join(sorted(self._backends)) or "none"
            raise ValueError(f"Unknown backend '{name}'. Available: {available}")
        return cls.from_options(dict(options or {}))
