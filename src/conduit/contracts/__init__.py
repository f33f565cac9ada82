"""Shared contracts for cross-boundary data types.

All dataclasses, enums, TypedDicts, and type aliases that cross subsystem
boundaries are defined here. Internal types stay in their modules.

Import pattern:
    from conduit.contracts import ExecutionContext, ProviderResult, TaskStatus
"""

from conduit.contracts.audit import Task, TaskStep
from conduit.contracts.context import BranchArrival, ExecutionContext
from conduit.contracts.enums import (
    CancelReason,
    ErrorKind,
    JoinStrategy,
    MergePolicy,
    NodeType,
    ProviderKind,
    QuotaPhase,
    StepStatus,
    TaskStatus,
    VendorJobState,
)
from conduit.contracts.errors import (
    ConduitError,
    DuplicateProviderError,
    InvalidGraphError,
    QuotaError,
    SchemaNotFoundError,
    StepError,
    StepStateError,
    TaskNotFoundError,
    TaskStateError,
    UnsupportedProviderRefError,
    make_step_error,
)
from conduit.contracts.results import (
    AuditVerdict,
    ProviderFailure,
    ProviderResult,
    TaskOutcome,
    VendorJobStatus,
)
from conduit.contracts.types import ROOT_BRANCH, BranchID, NodeID, ProviderRef, TaskID, child_branch_id

__all__ = [
    # audit
    "Task",
    "TaskStep",
    # context
    "BranchArrival",
    "ExecutionContext",
    # enums
    "CancelReason",
    "ErrorKind",
    "JoinStrategy",
    "MergePolicy",
    "NodeType",
    "ProviderKind",
    "QuotaPhase",
    "StepStatus",
    "TaskStatus",
    "VendorJobState",
    # errors
    "ConduitError",
    "DuplicateProviderError",
    "InvalidGraphError",
    "QuotaError",
    "SchemaNotFoundError",
    "StepError",
    "StepStateError",
    "TaskNotFoundError",
    "TaskStateError",
    "UnsupportedProviderRefError",
    "make_step_error",
    # results
    "AuditVerdict",
    "ProviderFailure",
    "ProviderResult",
    "TaskOutcome",
    "VendorJobStatus",
    # types
    "ROOT_BRANCH",
    "BranchID",
    "NodeID",
    "ProviderRef",
    "TaskID",
    "child_branch_id",
]
