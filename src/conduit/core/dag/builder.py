# src/conduit/core/dag/builder.py
"""PipelineDefinition construction from stored schema bodies.

Dependency: models.py, graph.py, legacy.py. Provider lookup is injected
through the ProviderLookup protocol so this module never imports plugins.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Protocol

from conduit.contracts.errors import InvalidGraphError, UnsupportedProviderRefError
from conduit.contracts.types import NodeID
from conduit.core.canonical import stable_hash
from conduit.core.dag import legacy
from conduit.core.dag.graph import PipelineDefinition, PipelineGraph, SchemaFormat
from conduit.core.dag.models import parse_node, parse_raw_graph


class ProviderLookup(Protocol):
    """Anything that can say whether a provider reference is registered."""

    def has(self, provider_ref: str) -> bool: ...


def decode_body(body: Any, schema_ref: str) -> Any:
    """Decode a schema body stored as JSON text; pass decoded values through."""
    if isinstance(body, bytes | bytearray):
        body = body.decode("utf-8")
    if isinstance(body, str):
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise InvalidGraphError(f"Schema '{schema_ref}' is not valid JSON: {e.msg} (line {e.lineno})") from e
    return body


def normalize_body(body: Any, schema_ref: str) -> tuple[dict[str, Any], SchemaFormat]:
    """Detect the schema format by shape and return a graph-format body.

    A list is a legacy step array; a mapping with 'nodes' is a graph.
    """
    decoded = decode_body(body, schema_ref)
    if isinstance(decoded, list):
        return legacy.adapt(decoded, schema_ref), "legacy"
    if isinstance(decoded, Mapping) and "nodes" in decoded:
        return dict(decoded), "graph"
    raise InvalidGraphError(
        f"Schema '{schema_ref}' is neither a legacy step array nor a graph with nodes/edges "
        f"(got {type(decoded).__name__})"
    )


def build_definition(
    schema_ref: str,
    body: Any,
    providers: ProviderLookup | None = None,
) -> PipelineDefinition:
    """Parse, validate and freeze a pipeline schema.

    Args:
        schema_ref: Reference the schema was loaded under
        body: JSON text, legacy step array, or {nodes, edges} mapping
        providers: Registry used to check provider references (skipped if None)

    Raises:
        InvalidGraphError: If the body is malformed or breaks a structural rule
        UnsupportedProviderRefError: If a provider node names an unregistered ref
    """
    graph_body, source_format = normalize_body(body, schema_ref)
    raw = parse_raw_graph(graph_body)

    graph = PipelineGraph()
    for raw_node in raw.nodes:
        graph.add_node(parse_node(raw_node))
    for raw_edge in raw.edges:
        graph.add_edge(NodeID(raw_edge.source), NodeID(raw_edge.target))

    definition = graph.freeze(
        schema_ref=schema_ref,
        schema_hash=stable_hash(raw.model_dump(mode="json")),
        source_format=source_format,
    )

    if providers is not None:
        for node in definition.provider_nodes():
            if not providers.has(node.provider_ref):
                raise UnsupportedProviderRefError(node.provider_ref, node.node_id)

    return definition
