# src/conduit/plugins/__init__.py
"""Provider plugin system via pluggy.

- Protocols: SyncProviderProtocol and VendorAsyncProviderProtocol
- Base classes: BaseSyncProvider and BaseVendorProvider
- ProviderContext: read-only inputs of one provider call
- ProviderRegistry: plugin discovery and ref -> instance lookup
- Hookspecs: the conduit_get_providers hook
"""

from conduit.plugins.base import BaseSyncProvider, BaseVendorProvider
from conduit.plugins.config_base import ProviderConfig, ProviderConfigError
from conduit.plugins.context import ProviderContext
from conduit.plugins.hookspecs import hookimpl, hookspec
from conduit.plugins.manager import ProviderRegistry
from conduit.plugins.protocols import ProviderProtocol, SyncProviderProtocol, VendorAsyncProviderProtocol

__all__ = [
    "BaseSyncProvider",
    "BaseVendorProvider",
    "ProviderConfig",
    "ProviderConfigError",
    "ProviderContext",
    "ProviderProtocol",
    "ProviderRegistry",
    "SyncProviderProtocol",
    "VendorAsyncProviderProtocol",
    "hookimpl",
    "hookspec",
]
