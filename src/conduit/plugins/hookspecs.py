# src/conduit/plugins/hookspecs.py
"""pluggy hook specifications for conduit provider plugins.

Plugins implement these hooks to register provider classes with the
registry.

Usage (implementing a plugin):
    from conduit.plugins.hookspecs import hookimpl

    class MyPlugin:
        @hookimpl  # NOT @hookspec - that's for defining specs
        def conduit_get_providers(self):
            return [MyProvider]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from conduit.plugins.base import BaseSyncProvider, BaseVendorProvider

PROJECT_NAME = "conduit"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class ConduitProviderSpec:
    """Hook specifications for provider plugins."""

    @hookspec
    def conduit_get_providers(self) -> list[type["BaseSyncProvider | BaseVendorProvider"]]:  # type: ignore[empty-body]
        """Return provider plugin classes.

        Returns:
            List of provider classes (not instances)
        """
