"""Audit trail contracts (tasks and task steps).

These are strict contracts - all enum fields use proper enum types.
Repository layer handles string-to-enum conversion for DB reads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from conduit.contracts.enums import ErrorKind, StepStatus, TaskStatus


@dataclass(frozen=True)
class Task:
    """A unit of work submitted by the surrounding application.

    Created by the caller before the engine runs; mutated only by the engine.
    """

    task_id: str
    user_id: str
    feature_id: str
    status: TaskStatus
    quota_amount: int = 1
    artifacts: dict[str, Any] | None = None
    result_urls: list[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    failed_node_id: str | None = None
    schema_ref: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class TaskStep:
    """One provider-node execution attempt in the audit trail.

    Append-only: inserted RUNNING, transitioned to a terminal status once.
    """

    step_id: str
    task_id: str
    node_id: str
    branch_id: str
    provider_ref: str
    status: StepStatus
    started_at: datetime
    output: dict[str, Any] | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    error: dict[str, Any] | None = None
    attempts: int = 0
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != StepStatus.RUNNING
