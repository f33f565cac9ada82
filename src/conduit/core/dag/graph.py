# src/conduit/core/dag/graph.py
"""PipelineGraph (mutable, validated once) and PipelineDefinition (frozen).

Construction from schema bodies lives in builder.py; this module holds the
structural validation rules and the read-only definition the scheduler walks.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Literal

import networkx as nx

from conduit.contracts.errors import InvalidGraphError
from conduit.contracts.types import NodeID
from conduit.core.dag.models import EndNode, ForkNode, JoinNode, Node, ProviderNode, StartNode

type SchemaFormat = Literal["legacy", "graph"]


@dataclass(frozen=True)
class PipelineDefinition:
    """A validated, immutable pipeline graph.

    Attributes:
        schema_ref: Reference the schema was loaded under
        nodes: Node id -> typed node
        edges: Edges in declaration order (branch index follows this order)
        start_node_id: The single start node
        end_node_id: The end node reached from start
        fork_joins: Fork id -> paired join id
        schema_hash: Canonical hash of the parsed graph body
        source_format: 'legacy' for adapted step arrays, 'graph' otherwise
    """

    schema_ref: str
    nodes: Mapping[NodeID, Node]
    edges: tuple[tuple[NodeID, NodeID], ...]
    start_node_id: NodeID
    end_node_id: NodeID
    fork_joins: Mapping[NodeID, NodeID]
    schema_hash: str
    source_format: SchemaFormat = "graph"

    def node(self, node_id: NodeID) -> Node:
        return self.nodes[node_id]

    def successors(self, node_id: NodeID) -> tuple[NodeID, ...]:
        return tuple(target for source, target in self.edges if source == node_id)

    def next_node(self, node_id: NodeID) -> NodeID:
        """Return the single successor of a start, provider or join node."""
        (target,) = self.successors(node_id)
        return target

    def branches(self, fork_id: NodeID) -> tuple[NodeID, ...]:
        """Return the first node of each branch, in branch-index order."""
        return self.successors(fork_id)

    def join_for(self, fork_id: NodeID) -> NodeID:
        return self.fork_joins[fork_id]

    def provider_nodes(self) -> Iterator[ProviderNode]:
        for node in self.nodes.values():
            if isinstance(node, ProviderNode):
                yield node


class PipelineGraph:
    """Pipeline graph under construction.

    Wraps a NetworkX DiGraph: nodes are added first, then edges; validate()
    checks every structural rule and returns the fork/join pairing.
    """

    def __init__(self) -> None:
        self._graph: nx.DiGraph = nx.DiGraph()
        self._nodes: dict[NodeID, Node] = {}
        self._edges: list[tuple[NodeID, NodeID]] = []

    def add_node(self, node: Node) -> None:
        if node.node_id in self._nodes:
            raise InvalidGraphError(f"Duplicate node id '{node.node_id}'")
        self._nodes[node.node_id] = node
        self._graph.add_node(node.node_id)

    def add_edge(self, source: NodeID, target: NodeID) -> None:
        for endpoint in (source, target):
            if endpoint not in self._nodes:
                raise InvalidGraphError(f"Edge {source!r} -> {target!r} references unknown node '{endpoint}'")
        if self._graph.has_edge(source, target):
            raise InvalidGraphError(f"Duplicate edge {source!r} -> {target!r}")
        self._graph.add_edge(source, target)
        self._edges.append((source, target))

    def _successors(self, node_id: NodeID) -> list[NodeID]:
        return [target for source, target in self._edges if source == node_id]

    def _single_successor(self, node_id: NodeID) -> NodeID:
        (target,) = self._successors(node_id)
        return target

    def validate(self) -> tuple[NodeID, NodeID, dict[NodeID, NodeID]]:
        """Check every structural rule.

        Returns:
            (start_node_id, end_node_id, fork_joins)

        Raises:
            InvalidGraphError: On the first rule the graph breaks
        """
        start_id = self._validate_start()

        if not nx.is_directed_acyclic_graph(self._graph):
            cycle = nx.find_cycle(self._graph)
            path = " -> ".join(str(source) for source, _ in cycle)
            raise InvalidGraphError(f"Pipeline graph contains a cycle: {path} -> {cycle[0][0]}")

        reachable = nx.descendants(self._graph, start_id) | {start_id}
        orphans = sorted(set(self._nodes) - reachable)
        if orphans:
            raise InvalidGraphError(f"Nodes not reachable from start '{start_id}': {orphans}")

        self._validate_degrees()

        fork_joins: dict[NodeID, NodeID] = {}
        end_id = self._trace_main_path(start_id, fork_joins)
        return start_id, end_id, fork_joins

    def freeze(self, *, schema_ref: str, schema_hash: str, source_format: SchemaFormat) -> PipelineDefinition:
        """Validate and return the immutable definition."""
        start_id, end_id, fork_joins = self.validate()
        return PipelineDefinition(
            schema_ref=schema_ref,
            nodes=MappingProxyType(dict(self._nodes)),
            edges=tuple(self._edges),
            start_node_id=start_id,
            end_node_id=end_id,
            fork_joins=MappingProxyType(fork_joins),
            schema_hash=schema_hash,
            source_format=source_format,
        )

    def _validate_start(self) -> NodeID:
        starts = [node_id for node_id, node in self._nodes.items() if isinstance(node, StartNode)]
        if len(starts) != 1:
            raise InvalidGraphError(f"Pipeline graph must have exactly one start node, found {len(starts)}: {sorted(starts)}")
        start_id = starts[0]
        if self._graph.in_degree(start_id) != 0:
            raise InvalidGraphError(f"Start node '{start_id}' must not have incoming edges")
        if self._graph.out_degree(start_id) != 1:
            raise InvalidGraphError(
                f"Start node '{start_id}' must have exactly one outgoing edge, has {self._graph.out_degree(start_id)}"
            )
        return start_id

    def _validate_degrees(self) -> None:
        for node_id, node in self._nodes.items():
            in_degree = self._graph.in_degree(node_id)
            out_degree = self._graph.out_degree(node_id)

            if in_degree > 1 and not isinstance(node, JoinNode):
                raise InvalidGraphError(f"Only join nodes may have more than one incoming edge; '{node_id}' has {in_degree}")

            match node:
                case ProviderNode() | JoinNode() if out_degree != 1:
                    raise InvalidGraphError(f"Node '{node_id}' must have exactly one outgoing edge, has {out_degree}")
                case EndNode() if out_degree != 0:
                    raise InvalidGraphError(f"End node '{node_id}' must not have outgoing edges")
                case ForkNode(branches=declared):
                    if out_degree < 2:
                        raise InvalidGraphError(f"Fork '{node_id}' must have at least two branches, has {out_degree}")
                    if declared is not None and declared != out_degree:
                        raise InvalidGraphError(
                            f"Fork '{node_id}' declares {declared} branches but has {out_degree} outgoing edges"
                        )

    def _trace_main_path(self, start_id: NodeID, fork_joins: dict[NodeID, NodeID]) -> NodeID:
        current = self._single_successor(start_id)
        while True:
            match self._nodes[current]:
                case EndNode():
                    return current
                case ForkNode():
                    current = self._single_successor(self._pair_fork(current, fork_joins))
                case JoinNode():
                    raise InvalidGraphError(f"Join '{current}' is not paired with any fork")
                case _:
                    current = self._single_successor(current)

    def _trace_branch(self, first: NodeID, fork_id: NodeID, fork_joins: dict[NodeID, NodeID]) -> NodeID:
        """Follow one branch until it reaches a join, skipping nested fork/join pairs."""
        current = first
        while True:
            match self._nodes[current]:
                case JoinNode():
                    return current
                case EndNode():
                    raise InvalidGraphError(f"Branch of fork '{fork_id}' reaches end node '{current}' without passing its join")
                case ForkNode():
                    current = self._single_successor(self._pair_fork(current, fork_joins))
                case _:
                    current = self._single_successor(current)

    def _pair_fork(self, fork_id: NodeID, fork_joins: dict[NodeID, NodeID]) -> NodeID:
        if fork_id in fork_joins:
            return fork_joins[fork_id]

        joins = {self._trace_branch(first, fork_id, fork_joins) for first in self._successors(fork_id)}
        if len(joins) != 1:
            raise InvalidGraphError(f"Branches of fork '{fork_id}' converge on different joins: {sorted(joins)}")
        join_id = joins.pop()

        fork_width = self._graph.out_degree(fork_id)
        join_width = self._graph.in_degree(join_id)
        if join_width != fork_width:
            raise InvalidGraphError(
                f"Join '{join_id}' has {join_width} incoming edges but its fork '{fork_id}' has {fork_width} branches"
            )

        fork_joins[fork_id] = join_id
        return join_id
