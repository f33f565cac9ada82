# src/conduit/core/dag/__init__.py
"""Pipeline graph parsing, validation and the frozen definition type."""

from conduit.core.dag.builder import ProviderLookup, build_definition, decode_body, normalize_body
from conduit.core.dag.graph import PipelineDefinition, PipelineGraph, SchemaFormat
from conduit.core.dag.legacy import adapt
from conduit.core.dag.models import (
    EndNode,
    ForkNode,
    JoinNode,
    Node,
    PollSpec,
    ProviderNode,
    RetryPolicySpec,
    StartNode,
)

__all__ = [
    "EndNode",
    "ForkNode",
    "JoinNode",
    "Node",
    "PipelineDefinition",
    "PipelineGraph",
    "PollSpec",
    "ProviderLookup",
    "ProviderNode",
    "RetryPolicySpec",
    "SchemaFormat",
    "StartNode",
    "adapt",
    "build_definition",
    "decode_body",
    "normalize_body",
]
