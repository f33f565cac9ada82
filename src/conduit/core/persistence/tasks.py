# src/conduit/core/persistence/tasks.py
"""Task rows: creation by the caller, transitions by the engine."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from conduit.contracts.audit import Task
from conduit.contracts.enums import TaskStatus
from conduit.contracts.errors import TaskNotFoundError, TaskStateError
from conduit.contracts.results import TaskOutcome
from conduit.core.canonical import canonical_json
from conduit.core.logging import get_logger
from conduit.core.persistence._helpers import generate_id, now
from conduit.core.persistence.database import ConduitDB
from conduit.core.persistence.repositories import TaskRepository
from conduit.core.persistence.schema import tasks_table

logger = get_logger(__name__)

_OPEN_STATUSES = (TaskStatus.PENDING.value, TaskStatus.PROCESSING.value)


class TaskStore:
    """Reads and transitions task rows.

    Status moves pending -> processing -> {success, failed}; a load-time
    failure may go straight from pending to failed. The terminal write is a
    conditional UPDATE on a non-terminal status, so only one caller can
    ever finalize a task.
    """

    def __init__(self, db: ConduitDB) -> None:
        self._db = db
        self._repo = TaskRepository()

    def create_task(
        self,
        user_id: str,
        feature_id: str,
        *,
        task_id: str | None = None,
        quota_amount: int = 1,
        input_data: dict[str, Any] | None = None,
    ) -> Task:
        """Insert a PENDING task (normally done by the surrounding application)."""
        task_id = task_id or generate_id()
        with self._db.connection() as conn:
            conn.execute(
                tasks_table.insert().values(
                    task_id=task_id,
                    user_id=user_id,
                    feature_id=feature_id,
                    status=TaskStatus.PENDING.value,
                    quota_amount=quota_amount,
                    input_json=canonical_json(input_data) if input_data is not None else None,
                    created_at=now(),
                )
            )
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found after insert")
        return task

    def get_task(self, task_id: str) -> Task | None:
        with self._db.connection() as conn:
            row = conn.execute(select(tasks_table).where(tasks_table.c.task_id == task_id)).fetchone()
        return self._repo.load(row) if row is not None else None

    def require_task(self, task_id: str) -> Task:
        """Get a task or raise TaskNotFoundError."""
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} does not exist")
        return task

    def mark_processing(self, task_id: str, schema_ref: str | None = None) -> None:
        """Move a PENDING task to PROCESSING.

        Raises:
            TaskNotFoundError: If the task does not exist
            TaskStateError: If the task is not PENDING
        """
        with self._db.connection() as conn:
            result = conn.execute(
                tasks_table.update()
                .where(tasks_table.c.task_id == task_id)
                .where(tasks_table.c.status == TaskStatus.PENDING.value)
                .values(status=TaskStatus.PROCESSING.value, schema_ref=schema_ref, started_at=now())
            )
            started = result.rowcount == 1
        if not started:
            task = self.require_task(task_id)
            raise TaskStateError(f"Task {task_id} cannot start from status {task.status}")

    def finalize(self, outcome: TaskOutcome) -> bool:
        """Write the terminal status, at most once per task.

        Returns:
            True if this call performed the transition, False if the task
            was already terminal (the earlier outcome is kept).

        Raises:
            ValueError: If outcome.status is not terminal
        """
        if not outcome.status.is_terminal:
            raise ValueError(f"Cannot finalize task {outcome.task_id} with non-terminal status {outcome.status}")

        error = outcome.error
        with self._db.connection() as conn:
            result = conn.execute(
                tasks_table.update()
                .where(tasks_table.c.task_id == outcome.task_id)
                .where(tasks_table.c.status.in_(_OPEN_STATUSES))
                .values(
                    status=outcome.status.value,
                    artifacts_json=canonical_json(outcome.artifacts) if outcome.succeeded else None,
                    result_urls_json=canonical_json(outcome.result_urls) if outcome.succeeded else None,
                    error_kind=error["kind"] if error is not None else None,
                    error_message=error["message"] if error is not None else None,
                    failed_node_id=outcome.failed_node_id,
                    completed_at=now(),
                )
            )
            transitioned = result.rowcount == 1
        if not transitioned:
            logger.warning("task_already_terminal", task_id=outcome.task_id, attempted_status=outcome.status.value)
        return transitioned
