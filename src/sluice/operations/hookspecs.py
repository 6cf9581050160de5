"""pluggy hook specifications for operation backends.

Third-party packages provide backends by implementing the hook:

    from sluice.operations.hookspecs import hookimpl

    class MyBackends:
        @hookimpl
        def sluice_get_backends(self):
            return [MyBackend]

Note: @hookspec defines the hook interface (done here).
      @hookimpl marks plugin implementations of those hooks.
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from sluice.operations.protocols import OperationBackend

PROJECT_NAME = "sluice"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class SluiceBackendSpec:
    """Hook specifications for operation backend plugins."""

    @hookspec
    def sluice_get_backends(self) -> list[type["OperationBackend"]]:  # type: ignore[empty-body]
        """Return operation backend classes.

        Returns:
            List of backend classes (not instances)
        """
