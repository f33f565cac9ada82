"""Passthrough provider: copies values and fixed outputs into the context.

Useful as a placeholder step, in tests, and to stamp constants into a
branch before a join.

Options:
    outputs: Mapping written into the context as-is
    copy: Mapping of target key -> source key, copied from the branch values
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import Field

from conduit.plugins.base import BaseSyncProvider
from conduit.plugins.config_base import ProviderConfig

if TYPE_CHECKING:
    from conduit.plugins.context import ProviderContext


_NODE_OPTION_KEYS = frozenset({"outputs", "copy"})


class PassthroughConfig(ProviderConfig):
    outputs: dict[str, Any] = Field(default_factory=dict)
    copy_keys: dict[str, str] = Field(default_factory=dict, alias="copy")

    model_config = {"extra": "forbid", "frozen": True, "populate_by_name": True}


class PassthroughProvider(BaseSyncProvider):
    """Echo configured outputs and copied keys back as step outputs.

    Node options override provider options key by key. Node options other
    than 'outputs' and 'copy' (e.g. a legacy step_type) are not ours and
    are left alone.
    """

    name = "passthrough"

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        super().__init__(options)
        self._defaults = PassthroughConfig.from_dict(self.options)

    def execute(self, ctx: ProviderContext) -> dict[str, Any]:
        own = {key: value for key, value in ctx.options.items() if key in _NODE_OPTION_KEYS}
        cfg = PassthroughConfig.from_dict(own) if own else self._defaults
        outputs: dict[str, Any] = {**self._defaults.outputs, **cfg.outputs}
        for target, source in {**self._defaults.copy_keys, **cfg.copy_keys}.items():
            if source not in ctx.values:
                raise KeyError(f"passthrough: source key '{source}' not in context")
            outputs[target] = ctx.values[source]
        return outputs
