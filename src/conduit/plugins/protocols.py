# src/conduit/plugins/protocols.py
"""Provider protocols defining the two invocation contracts.

These protocols define what methods providers must implement.
They're used for type checking; the invoker dispatches on `kind`.

Provider kinds:
- Sync: execute() returns the outputs directly
- Vendor-async: submit() starts an external job, poll() reports its
  state, fetch_result() returns its outputs once it has succeeded
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Literal, Protocol, runtime_checkable

from conduit.contracts.enums import ProviderKind

if TYPE_CHECKING:
    from conduit.contracts.results import VendorJobStatus
    from conduit.plugins.context import ProviderContext


@runtime_checkable
class SyncProviderProtocol(Protocol):
    """Protocol for synchronous providers.

    Example:
        class ResizeProvider:
            name = "resize"
            kind = ProviderKind.SYNC

            def execute(self, ctx: ProviderContext) -> Mapping[str, Any]:
                return {"image": resize(ctx.values["image"], ctx.options["width"])}
    """

    name: ClassVar[str]
    kind: ClassVar[Literal[ProviderKind.SYNC]]

    def execute(self, ctx: ProviderContext) -> Mapping[str, Any] | Any:
        """Run the step. A non-mapping return is stored under 'result'.

        Raise any exception to report a provider_error.
        """
        ...

    def close(self) -> None: ...


@runtime_checkable
class VendorAsyncProviderProtocol(Protocol):
    """Protocol for providers backed by a long-running external job.

    The invoker owns the polling loop; providers only translate calls.
    """

    name: ClassVar[str]
    kind: ClassVar[Literal[ProviderKind.VENDOR_ASYNC]]

    def submit(self, ctx: ProviderContext) -> str:
        """Start the vendor job and return its id."""
        ...

    def poll(self, job_id: str, ctx: ProviderContext) -> VendorJobStatus:
        """Report the job's current state. Must not block for long."""
        ...

    def fetch_result(self, job_id: str, ctx: ProviderContext) -> Mapping[str, Any]:
        """Return the outputs of a SUCCEEDED job.

        Result URLs meant for the content audit go under 'result_urls'.
        """
        ...

    def close(self) -> None: ...


type ProviderProtocol = SyncProviderProtocol | VendorAsyncProviderProtocol
