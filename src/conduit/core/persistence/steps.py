# src/conduit/core/persistence/steps.py
"""Step recording: the append-only per-node execution trail."""

from __future__ import annotations

import itertools
import threading
from typing import Any

from sqlalchemy import select

from conduit.contracts.audit import TaskStep
from conduit.contracts.enums import StepStatus
from conduit.contracts.errors import StepError, StepStateError
from conduit.core.canonical import canonical_json
from conduit.core.logging import get_logger
from conduit.core.persistence._helpers import generate_id, now
from conduit.core.persistence.database import ConduitDB
from conduit.core.persistence.repositories import TaskStepRepository
from conduit.core.persistence.schema import task_steps_table

logger = get_logger(__name__)


class StepRecorder:
    """Writes and reads task_steps rows.

    A row is inserted RUNNING when a provider node starts and moved to a
    terminal status exactly once. The terminal write is a conditional
    UPDATE on status='running', so a second write loses and raises.

    Example:
        step_id = recorder.record_start(task_id, "step_0", "main", "resize")
        recorder.record_end(step_id, StepStatus.SUCCESS, output={"image": "..."})
    """

    def __init__(self, db: ConduitDB) -> None:
        self._db = db
        self._repo = TaskStepRepository()
        self._seq = itertools.count()
        self._seq_lock = threading.Lock()

    def _next_seq(self) -> int:
        with self._seq_lock:
            return next(self._seq)

    def record_start(self, task_id: str, node_id: str, branch_id: str, provider_ref: str) -> str:
        """Insert a RUNNING step row and return its id."""
        step_id = generate_id()
        with self._db.connection() as conn:
            conn.execute(
                task_steps_table.insert().values(
                    step_id=step_id,
                    task_id=task_id,
                    node_id=node_id,
                    branch_id=branch_id,
                    provider_ref=provider_ref,
                    status=StepStatus.RUNNING.value,
                    seq=self._next_seq(),
                    attempts=0,
                    started_at=now(),
                )
            )
        logger.debug("step_started", step_id=step_id, node_id=node_id, branch_id=branch_id, provider_ref=provider_ref)
        return step_id

    def record_end(
        self,
        step_id: str,
        status: StepStatus,
        output: dict[str, Any] | None = None,
        error: StepError | None = None,
        attempts: int = 1,
    ) -> None:
        """Move a RUNNING step to its terminal status.

        Raises:
            ValueError: If status is RUNNING, or a success has no output,
                or a non-success has no error
            StepStateError: If the step does not exist or is already terminal
        """
        if status == StepStatus.RUNNING:
            raise ValueError("Cannot end a step with status RUNNING")
        if status == StepStatus.SUCCESS and output is None:
            raise ValueError("A successful step must carry an output")
        if status != StepStatus.SUCCESS and error is None:
            raise ValueError(f"A {status} step must carry a typed error")

        with self._db.connection() as conn:
            result = conn.execute(
                task_steps_table.update()
                .where(task_steps_table.c.step_id == step_id)
                .where(task_steps_table.c.status == StepStatus.RUNNING.value)
                .values(
                    status=status.value,
                    output_json=canonical_json(output) if output is not None else None,
                    error_json=canonical_json(error) if error is not None else None,
                    error_kind=error["kind"] if error is not None else None,
                    error_message=error["message"] if error is not None else None,
                    attempts=attempts,
                    finished_at=now(),
                )
            )
            if result.rowcount == 0:
                existing = conn.execute(
                    select(task_steps_table.c.status).where(task_steps_table.c.step_id == step_id)
                ).fetchone()
                if existing is None:
                    raise StepStateError(f"Step {step_id} does not exist")
                raise StepStateError(f"Step {step_id} is already terminal ({existing.status}); refusing to record {status}")

        logger.debug("step_finished", step_id=step_id, status=status.value, attempts=attempts)

    def get_step(self, step_id: str) -> TaskStep | None:
        with self._db.connection() as conn:
            row = conn.execute(select(task_steps_table).where(task_steps_table.c.step_id == step_id)).fetchone()
        return self._repo.load(row) if row is not None else None

    def steps_for_task(self, task_id: str) -> list[TaskStep]:
        """Return every step of a task, ordered by start time."""
        query = (
            select(task_steps_table)
            .where(task_steps_table.c.task_id == task_id)
            .order_by(task_steps_table.c.started_at, task_steps_table.c.seq)
        )
        with self._db.connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._repo.load(row) for row in rows]
