# src/conduit/plugins/base.py
"""Base classes for provider implementations.

Built-in providers subclass BaseSyncProvider or BaseVendorProvider.
Discovery uses issubclass() checks against these classes, because a
Protocol with ClassVar members cannot back issubclass().

Lifecycle: a provider instance is built once per configured ref from its
options, shared by every task and branch (so execute/submit/poll must be
thread-safe), and closed when the registry is closed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from conduit.contracts.enums import ProviderKind

if TYPE_CHECKING:
    from conduit.contracts.results import VendorJobStatus
    from conduit.plugins.context import ProviderContext


class _ProviderBase(ABC):
    name: ClassVar[str]
    kind: ClassVar[ProviderKind]

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        """Initialize with configuration.

        Args:
            options: Provider options from settings (ProviderInstanceSettings.options)
        """
        self.options: dict[str, Any] = dict(options or {})

    def close(self) -> None:  # noqa: B027 - optional override, not abstract
        """Release resources (HTTP clients, pools). Called once by the registry."""


class BaseSyncProvider(_ProviderBase):
    """Base class for synchronous providers.

    Subclass and implement execute().

    Example:
        class UppercaseProvider(BaseSyncProvider):
            name = "uppercase"

            def execute(self, ctx: ProviderContext) -> dict[str, Any]:
                return {"text": ctx.values["text"].upper()}
    """

    kind: ClassVar[ProviderKind] = ProviderKind.SYNC

    @abstractmethod
    def execute(self, ctx: ProviderContext) -> Mapping[str, Any] | Any:
        """Run the step and return its outputs."""
        ...


class BaseVendorProvider(_ProviderBase):
    """Base class for providers fronting an external asynchronous job API.

    Subclass and implement submit(), poll() and fetch_result(). The engine
    drives the polling loop, the retry policy and the content audit.
    """

    kind: ClassVar[ProviderKind] = ProviderKind.VENDOR_ASYNC

    @abstractmethod
    def submit(self, ctx: ProviderContext) -> str: ...

    @abstractmethod
    def poll(self, job_id: str, ctx: ProviderContext) -> VendorJobStatus: ...

    @abstractmethod
    def fetch_result(self, job_id: str, ctx: ProviderContext) -> Mapping[str, Any]: ...
