"""Repository layer for task/step audit models.

Handles the seam between SQLAlchemy rows (strings, JSON text) and domain
objects (strict enum types). The store is our own data: if a row holds an
unknown status, loading it raises instead of guessing.
"""

from typing import Any

from sqlalchemy.engine import Row as SARow

from conduit.contracts.audit import Task, TaskStep
from conduit.contracts.enums import ErrorKind, StepStatus, TaskStatus
from conduit.core.persistence._helpers import as_utc, load_json


class TaskRepository:
    """Repository for Task records."""

    def load(self, row: SARow[Any]) -> Task:
        """Load Task from database row.

        Converts string fields to enums. Crashes on invalid data.
        """
        return Task(
            task_id=row.task_id,
            user_id=row.user_id,
            feature_id=row.feature_id,
            status=TaskStatus(row.status),
            quota_amount=row.quota_amount,
            artifacts=load_json(row.artifacts_json),
            result_urls=load_json(row.result_urls_json) or [],
            error_kind=ErrorKind(row.error_kind) if row.error_kind is not None else None,
            error_message=row.error_message,
            failed_node_id=row.failed_node_id,
            schema_ref=row.schema_ref,
            created_at=as_utc(row.created_at),
            started_at=as_utc(row.started_at),
            completed_at=as_utc(row.completed_at),
        )


class TaskStepRepository:
    """Repository for TaskStep records."""

    def load(self, row: SARow[Any]) -> TaskStep:
        started_at = as_utc(row.started_at)
        if started_at is None:
            raise ValueError(f"Step {row.step_id} has no started_at")
        return TaskStep(
            step_id=row.step_id,
            task_id=row.task_id,
            node_id=row.node_id,
            branch_id=row.branch_id,
            provider_ref=row.provider_ref,
            status=StepStatus(row.status),
            started_at=started_at,
            output=load_json(row.output_json),
            error_kind=ErrorKind(row.error_kind) if row.error_kind is not None else None,
            error_message=row.error_message,
            error=load_json(row.error_json),
            attempts=row.attempts,
            finished_at=as_utc(row.finished_at),
        )
