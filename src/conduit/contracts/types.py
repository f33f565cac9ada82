"""Semantic type aliases for compile-time type safety.

NewType creates distinct types that mypy treats as incompatible,
preventing accidental misuse of semantically different string values.
"""

from typing import NewType

NodeID = NewType("NodeID", str)
"""Node identifier as declared in the pipeline schema (e.g., 'step_0', 'fork_a')"""

BranchID = NewType("BranchID", str)
"""Path of forks that produced a walker (e.g., 'main', 'main/fork_a.1')"""

ProviderRef = NewType("ProviderRef", str)
"""Symbolic provider reference resolved through the registry (e.g., 'http_job')"""

TaskID = NewType("TaskID", str)
"""Caller-assigned task identifier"""

ROOT_BRANCH = BranchID("main")
"""Branch id of the walker that starts at the start node."""


def child_branch_id(parent: BranchID, fork_id: str, index: int) -> BranchID:
    """Derive the branch id for the index-th branch of a fork."""
    return BranchID(f"{parent}/{fork_id}.{index}")
