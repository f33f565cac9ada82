# src/conduit/plugins/context.py
"""Provider execution context.

The ProviderContext carries everything a provider may need for one node
execution: identity for logging and vendor correlation, the accumulated
values of its branch, the node's options and the branch's cancel token.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from conduit.engine.cancellation import CancelToken


@dataclass(frozen=True)
class ProviderContext:
    """Read-only inputs for a provider call.

    Attributes:
        task_id: Task being executed
        node_id: Provider node being executed
        branch_id: Branch the node runs on ('main' outside forks)
        values: Accumulated outputs of the branch (read-only)
        metadata: Caller-supplied task metadata (read-only)
        options: The node's options as written in the schema
        cancel: Token tripped when the branch or task is cancelled; long
            running providers should check cancel.is_cancelled
    """

    task_id: str
    node_id: str
    branch_id: str
    values: Mapping[str, Any]
    metadata: Mapping[str, Any] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)
    cancel: CancelToken | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_cancelled
