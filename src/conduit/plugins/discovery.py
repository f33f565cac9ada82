"""Built-in provider discovery by package scanning.

Scans conduit.plugins.providers for classes that:
1. Inherit from BaseSyncProvider or BaseVendorProvider
2. Have a `name` class attribute
3. Are not abstract
"""

import importlib
import inspect
import logging
import pkgutil
from types import ModuleType
from typing import Any

from conduit.plugins.base import BaseSyncProvider, BaseVendorProvider

logger = logging.getLogger(__name__)

BUILTIN_PROVIDER_PACKAGE = "conduit.plugins.providers"

_PROVIDER_BASES: tuple[type, ...] = (BaseSyncProvider, BaseVendorProvider)


def _providers_in_module(module: ModuleType) -> list[type]:
    discovered: list[type] = []
    for _, obj in inspect.getmembers(module, inspect.isclass):
        # Must be defined in this module (not imported)
        if obj.__module__ != module.__name__:
            continue
        if not issubclass(obj, _PROVIDER_BASES) or obj in _PROVIDER_BASES:
            continue
        if inspect.isabstract(obj):
            continue
        if not isinstance(getattr(obj, "name", None), str):
            logger.warning("Provider class %s has no name attribute; skipping", obj.__qualname__)
            continue
        discovered.append(obj)
    return discovered


def discover_providers(package_name: str = BUILTIN_PROVIDER_PACKAGE) -> list[type]:
    """Import every module of a package and collect its provider classes.

    Provider modules are system code: import errors propagate.
    """
    package = importlib.import_module(package_name)
    discovered: list[type] = []
    for module_info in sorted(pkgutil.iter_modules(package.__path__), key=lambda m: m.name):
        if module_info.name.startswith("_"):
            continue
        module = importlib.import_module(f"{package_name}.{module_info.name}")
        discovered.extend(_providers_in_module(module))
    return discovered


def create_dynamic_hookimpl(provider_classes: list[type]) -> object:
    """Create a pluggy hookimpl object returning the given provider classes."""
    from conduit.plugins.hookspecs import hookimpl

    class DynamicHookImpl:
        """Dynamically generated hook implementer."""

    def hook_method(self: Any) -> list[type]:
        return provider_classes

    DynamicHookImpl.conduit_get_providers = hookimpl(hook_method)  # type: ignore[attr-defined]
    return DynamicHookImpl()
