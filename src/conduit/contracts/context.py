"""ExecutionContext: immutable per-branch snapshot of accumulated outputs.

Contexts are values, not shared objects. A fork hands each branch its own
copy and a join builds a fresh context from the contributing branches, so
concurrent branches can never observe each other's in-flight state.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from conduit.contracts.enums import MergePolicy


def _freeze(values: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(copy.deepcopy(dict(values)))


@dataclass(frozen=True)
class BranchArrival:
    """A branch context delivered to a join.

    Attributes:
        branch_index: Position of the branch among the fork's outgoing edges
        arrival_seq: Global completion order (lower arrived earlier)
        context: Context the branch finished with
    """

    branch_index: int
    arrival_seq: int
    context: ExecutionContext


@dataclass(frozen=True)
class ExecutionContext:
    """Accumulated key/value outputs for one execution path.

    Attributes:
        task_id: Task being executed
        values: Read-only mapping of accumulated outputs (starts as the input)
        metadata: Caller-supplied metadata, identical on every branch
    """

    task_id: str
    values: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Deep copies keep nested dicts/lists from leaking between branches
        object.__setattr__(self, "values", _freeze(self.values))
        object.__setattr__(self, "metadata", _freeze(self.metadata))

    @classmethod
    def initial(
        cls,
        task_id: str,
        input_data: Mapping[str, Any],
        metadata: Mapping[str, Any] | None = None,
    ) -> ExecutionContext:
        return cls(task_id=task_id, values=input_data, metadata=metadata or {})

    def with_outputs(self, outputs: Mapping[str, Any]) -> ExecutionContext:
        """Return a new context with provider outputs layered on top."""
        return ExecutionContext(
            task_id=self.task_id,
            values={**self.values, **outputs},
            metadata=self.metadata,
        )

    def fork(self) -> ExecutionContext:
        """Return an independent snapshot for a new branch."""
        return ExecutionContext(task_id=self.task_id, values=self.values, metadata=self.metadata)

    def to_dict(self) -> dict[str, Any]:
        """Return a mutable deep copy of the accumulated values."""
        return copy.deepcopy(dict(self.values))

    @staticmethod
    def merge(
        base: ExecutionContext,
        arrivals: Sequence[BranchArrival],
        policy: MergePolicy = MergePolicy.LAST_ARRIVAL,
    ) -> ExecutionContext:
        """Union contributing branch contexts over the pre-fork base.

        The policy decides which branch wins a key collision:
            LAST_ARRIVAL: the branch that completed last wins
            FIRST_ARRIVAL: the branch that completed first wins
            BRANCH_ORDER: the branch with the highest edge index wins

        Keys a branch merely inherited from the base are not treated as
        contributions, so an untouched copy never overwrites another
        branch's update of the same key.
        """
        match policy:
            case MergePolicy.LAST_ARRIVAL:
                ordered = sorted(arrivals, key=lambda a: a.arrival_seq)
            case MergePolicy.FIRST_ARRIVAL:
                ordered = sorted(arrivals, key=lambda a: a.arrival_seq, reverse=True)
            case MergePolicy.BRANCH_ORDER:
                ordered = sorted(arrivals, key=lambda a: a.branch_index)

        merged: dict[str, Any] = dict(base.values)
        for arrival in ordered:
            for key, value in arrival.context.values.items():
                if key in base.values and base.values[key] == value:
                    continue
                merged[key] = value
        return ExecutionContext(task_id=base.task_id, values=merged, metadata=base.metadata)
