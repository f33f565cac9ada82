"""All status codes, strategies, and kinds used across subsystem boundaries.

Values are stored in the database, so renaming a member value is a schema
change.
"""

from enum import StrEnum


class NodeType(StrEnum):
    """Type of node in a pipeline graph.

    Stored in pipeline schemas (nodes[].type).
    """

    START = "start"
    PROVIDER = "provider"
    FORK = "fork"
    JOIN = "join"
    END = "end"


class JoinStrategy(StrEnum):
    """How a join node waits for the branches of its fork.

    Values:
        ALL: Wait for every branch; any failure fails the join
        ANY: First successful branch wins; fails only if every branch fails
        FIRST: First branch to complete decides, success or failure
    """

    ALL = "ALL"
    ANY = "ANY"
    FIRST = "FIRST"


class MergePolicy(StrEnum):
    """Collision rule when contributing branch contexts share an output key."""

    LAST_ARRIVAL = "last_arrival"
    FIRST_ARRIVAL = "first_arrival"
    BRANCH_ORDER = "branch_order"


class TaskStatus(StrEnum):
    """Status of a task.

    Stored in database (tasks.status). SUCCESS and FAILED are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.FAILED)


class StepStatus(StrEnum):
    """Status of one provider-node execution.

    Stored in database (task_steps.status). Everything but RUNNING is terminal.
    """

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class ErrorKind(StrEnum):
    """Structured error kind surfaced on failed steps and tasks.

    Stored in database (tasks.error_kind, task_steps.error_kind).
    """

    SCHEMA_NOT_FOUND = "schema_not_found"
    INVALID_GRAPH = "invalid_graph"
    UNSUPPORTED_PROVIDER_REF = "unsupported_provider_ref"
    PROVIDER_ERROR = "provider_error"
    TIMEOUT = "timeout"
    AUDIT_REJECTED = "audit_rejected"
    QUOTA_ERROR = "quota_error"
    CANCELLED = "cancelled"


class VendorJobState(StrEnum):
    """Normalized state of an external vendor job, as reported by poll()."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VendorJobState.SUCCEEDED, VendorJobState.FAILED)


class ProviderKind(StrEnum):
    """Invocation contract a provider implements."""

    SYNC = "sync"
    VENDOR_ASYNC = "vendor_async"


class CancelReason(StrEnum):
    """Why a cancel token was tripped.

    SUPERSEDED and IGNORED come from join strategies (FIRST and ANY losers);
    TASK_CANCELLED and DEADLINE stop the whole run.
    """

    SUPERSEDED = "superseded"
    IGNORED = "ignored"
    TASK_CANCELLED = "task_cancelled"
    DEADLINE = "deadline"

    @property
    def stops_task(self) -> bool:
        return self in (CancelReason.TASK_CANCELLED, CancelReason.DEADLINE)


class QuotaPhase(StrEnum):
    """Phase of a quota reservation.

    Stored in database (quota_transactions.phase).
    """

    RESERVED = "reserved"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
