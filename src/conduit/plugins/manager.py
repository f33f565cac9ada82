# src/conduit/plugins/manager.py
"""Provider registry: plugin discovery, instance configuration, lookup.

Uses pluggy for hook-based registration of provider classes. Pipeline
schemas never name a class: they name a provider *ref*, which the registry
resolves to a configured provider instance.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

import pluggy

from conduit.contracts.errors import DuplicateProviderError, UnsupportedProviderRefError
from conduit.core.config import ProviderInstanceSettings
from conduit.core.logging import get_logger
from conduit.plugins.base import BaseSyncProvider, BaseVendorProvider
from conduit.plugins.hookspecs import PROJECT_NAME, ConduitProviderSpec
from conduit.plugins.protocols import ProviderProtocol

logger = get_logger(__name__)


class ProviderRegistry:
    """Resolves provider refs to executable providers.

    Two layers:
        plugin classes: registered through the conduit_get_providers hook,
            keyed by class `name` (e.g. 'http_job')
        provider instances: keyed by ref, either built from settings
            (ref -> plugin + options) or registered directly

    Lookups are lock-free reads of a dict that is replaced, never mutated
    in place, so the registry is safe to share across branch threads.

    Usage:
        registry = ProviderRegistry()
        registry.register_builtin_plugins()
        registry.configure(settings.providers)
        provider = registry.get("upscale")
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(ConduitProviderSpec)
        self._plugins: dict[str, type[BaseSyncProvider | BaseVendorProvider]] = {}
        self._instances: dict[str, ProviderProtocol] = {}
        self._write_lock = threading.Lock()

    # === Plugin classes ===

    def register_builtin_plugins(self) -> None:
        """Discover and register the providers shipped with conduit."""
        from conduit.plugins.discovery import create_dynamic_hookimpl, discover_providers

        self.register(create_dynamic_hookimpl(discover_providers()))

    def register(self, plugin: Any) -> None:
        """Register a pluggy plugin object implementing conduit_get_providers."""
        self._pm.register(plugin)
        self._refresh_plugins()

    def _refresh_plugins(self) -> None:
        """Rebuild the plugin-class cache from hooks.

        Raises:
            DuplicateProviderError: If two plugin classes share a name
        """
        new_plugins: dict[str, type[BaseSyncProvider | BaseVendorProvider]] = {}
        for classes in self._pm.hook.conduit_get_providers():
            for cls in classes:
                if cls.name in new_plugins and new_plugins[cls.name] is not cls:
                    raise DuplicateProviderError(
                        f"Duplicate provider plugin name: '{cls.name}'. Already registered by {new_plugins[cls.name].__name__}"
                    )
                new_plugins[cls.name] = cls
        self._plugins = new_plugins

    def get_plugin_class(self, name: str) -> type[BaseSyncProvider | BaseVendorProvider] | None:
        return self._plugins.get(name)

    @property
    def plugin_names(self) -> list[str]:
        return sorted(self._plugins)

    # === Provider instances ===

    def register_instance(self, ref: str, provider: ProviderProtocol) -> None:
        """Bind a ref to an already-built provider.

        Raises:
            DuplicateProviderError: If the ref is already bound
        """
        with self._write_lock:
            if ref in self._instances:
                raise DuplicateProviderError(f"Provider ref '{ref}' is already registered")
            self._instances = {**self._instances, ref: provider}
        logger.debug("provider_registered", provider_ref=ref, kind=str(provider.kind))

    def configure(self, providers: Iterable[ProviderInstanceSettings]) -> None:
        """Build one instance per configured ref from its plugin class.

        Raises:
            UnsupportedProviderRefError: If a setting names an unknown plugin
            DuplicateProviderError: If a ref is already bound
        """
        for setting in providers:
            cls = self._plugins.get(setting.plugin)
            if cls is None:
                raise UnsupportedProviderRefError(setting.plugin, node_id=None)
            self.register_instance(setting.ref, cls(dict(setting.options)))

    def has(self, provider_ref: str) -> bool:
        return provider_ref in self._instances

    def get(self, provider_ref: str) -> ProviderProtocol:
        """Resolve a ref to its provider.

        Raises:
            UnsupportedProviderRefError: If the ref is not registered
        """
        try:
            return self._instances[provider_ref]
        except KeyError:
            raise UnsupportedProviderRefError(provider_ref) from None

    @property
    def refs(self) -> list[str]:
        return sorted(self._instances)

    def close(self) -> None:
        """Close every provider instance; one failing close does not skip the rest."""
        with self._write_lock:
            instances, self._instances = self._instances, {}
        for ref, provider in instances.items():
            try:
                provider.close()
            except Exception as e:  # teardown must reach every provider
                logger.warning("provider_close_failed", provider_ref=ref, error=str(e))
