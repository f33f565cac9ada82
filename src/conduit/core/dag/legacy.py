# src/conduit/core/dag/legacy.py
"""Legacy linear schema adapter.

Older pipeline schemas are an ordered array of steps:

    [
        {"type": "SYNC_IMAGE_PROCESS", "provider_ref": "resize", "timeout": 30000},
        {"type": "VENDOR_JOB", "provider_ref": "upscale", "retry_policy": {"maxAttempts": 3}},
    ]

adapt() rewrites such an array into the graph format as a single chain
start -> step_0 -> ... -> step_N-1 -> end, so both formats run through the
same validator and scheduler.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from conduit.contracts.errors import InvalidGraphError

START_NODE_ID = "start"
END_NODE_ID = "end"

# Legacy steps without their own timeout get this execution bound
DEFAULT_STEP_TIMEOUT_MS = 30_000


def step_node_id(index: int) -> str:
    return f"step_{index}"


def _provider_data(index: int, step: Any) -> dict[str, Any]:
    if not isinstance(step, Mapping):
        raise InvalidGraphError(f"Legacy step {index} must be an object, got {type(step).__name__}")

    provider_ref = step.get("provider_ref")
    if not isinstance(provider_ref, str) or not provider_ref:
        raise InvalidGraphError(f"Legacy step {index} is missing provider_ref")

    data: dict[str, Any] = {
        "provider_ref": provider_ref,
        "options": dict(step.get("options") or {}),
    }
    if "type" in step:
        # Old step kinds name the provider family; providers may read it
        data["options"].setdefault("step_type", step["type"])
    if step.get("retry_policy") is not None:
        data["retry_policy"] = step["retry_policy"]
    timeout_ms = step.get("timeout")
    if timeout_ms is not None and (isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int | float) or timeout_ms <= 0):
        raise InvalidGraphError(f"Legacy step {index} timeout must be a positive number of milliseconds")
    if timeout_ms is not None:
        # Legacy timeouts are milliseconds
        data["poll"] = {"timeout_seconds": timeout_ms / 1000}
    data["timeout_seconds"] = (timeout_ms if timeout_ms is not None else DEFAULT_STEP_TIMEOUT_MS) / 1000
    return data


def adapt(step_array: Sequence[Any], schema_ref: str) -> dict[str, Any]:
    """Rewrite a legacy step array as a graph-format body.

    Args:
        step_array: Ordered legacy steps
        schema_ref: Reference the schema was loaded under (for error messages)

    Returns:
        A {nodes, edges} body forming one chain from start to end

    Raises:
        InvalidGraphError: If the array is empty or a step is malformed
    """
    if len(step_array) == 0:
        raise InvalidGraphError(f"Legacy schema '{schema_ref}' has no steps")

    nodes: list[dict[str, Any]] = [{"id": START_NODE_ID, "type": "start"}]
    for index, step in enumerate(step_array):
        nodes.append({"id": step_node_id(index), "type": "provider", "data": _provider_data(index, step)})
    nodes.append({"id": END_NODE_ID, "type": "end"})

    chain = [node["id"] for node in nodes]
    edges = [{"source": source, "target": target} for source, target in zip(chain, chain[1:], strict=False)]
    return {"nodes": nodes, "edges": edges}
