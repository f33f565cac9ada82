# src/conduit/core/dag/models.py
"""Node types and raw schema models for pipeline graphs.

Raw schema documents are parsed with Pydantic; each parsed node becomes one
of a closed set of frozen dataclasses. The scheduler dispatches on these
with a `match` statement, so there is no "unknown node type" at run time:
an unknown type is rejected while the schema is parsed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from conduit.contracts.enums import JoinStrategy, NodeType
from conduit.contracts.errors import InvalidGraphError
from conduit.contracts.types import NodeID, ProviderRef

# =============================================================================
# Provider node policies
# =============================================================================


class RetryPolicySpec(BaseModel):
    """Per-node retry policy. Unset fields fall back to engine settings.

    Accepts both snake_case keys and the legacy camelCase keys
    (maxAttempts, delayMs, exponential) found in older schemas.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int | None = Field(default=None, gt=0)
    delay_seconds: float | None = Field(default=None, ge=0)
    exponential: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return value
        data = dict(value)
        if "maxAttempts" in data:
            data["max_attempts"] = data.pop("maxAttempts")
        if "delayMs" in data:
            delay_ms = data.pop("delayMs")
            data["delay_seconds"] = delay_ms / 1000 if isinstance(delay_ms, int | float) else delay_ms
        return data


class PollSpec(BaseModel):
    """Per-node override of the vendor polling budget."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    interval_seconds: float | None = Field(default=None, ge=0)
    max_attempts: int | None = Field(default=None, gt=0)
    timeout_seconds: float | None = Field(default=None, gt=0)


# =============================================================================
# Raw schema documents
# =============================================================================


class RawNode(BaseModel):
    """A node exactly as written in a graph-format schema."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    type: NodeType
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class RawEdge(BaseModel):
    """An edge exactly as written in a graph-format schema."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)


class RawGraph(BaseModel):
    """Graph-format schema body: {nodes: [...], edges: [...]}."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    nodes: list[RawNode]
    edges: list[RawEdge] = Field(default_factory=list)


class _ProviderData(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    provider_ref: str = Field(min_length=1)
    options: dict[str, Any] = Field(default_factory=dict)
    retry_policy: RetryPolicySpec | None = None
    poll: PollSpec | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)


class _ForkData(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    branches: int | None = Field(default=None, gt=0)


class _JoinData(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    strategy: JoinStrategy = JoinStrategy.ALL

    @field_validator("strategy", mode="before")
    @classmethod
    def _upper_strategy(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


# =============================================================================
# Parsed nodes
# =============================================================================


@dataclass(frozen=True, slots=True)
class StartNode:
    node_id: NodeID


@dataclass(frozen=True, slots=True)
class ProviderNode:
    """A processing step backed by a registered provider.

    timeout_seconds bounds one sync execute() call; None lets it run until
    it returns.
    """

    node_id: NodeID
    provider_ref: ProviderRef
    options: Mapping[str, Any] = field(default_factory=dict)
    retry_policy: RetryPolicySpec | None = None
    poll: PollSpec | None = None
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class ForkNode:
    """Splits execution into one concurrent branch per outgoing edge.

    branches is the declared branch count, if the schema states one; the
    validator requires it to equal the out-degree.
    """

    node_id: NodeID
    branches: int | None = None


@dataclass(frozen=True, slots=True)
class JoinNode:
    node_id: NodeID
    strategy: JoinStrategy = JoinStrategy.ALL


@dataclass(frozen=True, slots=True)
class EndNode:
    node_id: NodeID


type Node = StartNode | ProviderNode | ForkNode | JoinNode | EndNode


def _describe(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in e['loc']) or 'data'}: {e['msg']}" for e in error.errors())


def parse_node(raw: RawNode) -> Node:
    """Convert a raw schema node into its typed form.

    Raises:
        InvalidGraphError: If the node's data does not fit its type
    """
    node_id = NodeID(raw.id)
    try:
        match raw.type:
            case NodeType.START:
                return StartNode(node_id)
            case NodeType.PROVIDER:
                data = _ProviderData.model_validate(raw.data)
                return ProviderNode(
                    node_id=node_id,
                    provider_ref=ProviderRef(data.provider_ref),
                    options=dict(data.options),
                    retry_policy=data.retry_policy,
                    poll=data.poll,
                    timeout_seconds=data.timeout_seconds,
                )
            case NodeType.FORK:
                return ForkNode(node_id, branches=_ForkData.model_validate(raw.data).branches)
            case NodeType.JOIN:
                return JoinNode(node_id, strategy=_JoinData.model_validate(raw.data).strategy)
            case NodeType.END:
                return EndNode(node_id)
    except ValidationError as e:
        raise InvalidGraphError(f"Node '{raw.id}' ({raw.type}) has invalid data: {_describe(e)}") from e


def parse_raw_graph(body: Any) -> RawGraph:
    """Validate the shape of a graph-format schema body.

    Raises:
        InvalidGraphError: If the body is not {nodes: [...], edges: [...]}
    """
    try:
        return RawGraph.model_validate(body)
    except ValidationError as e:
        raise InvalidGraphError(f"Malformed graph schema: {_describe(e)}") from e
