# src/conduit/engine/orchestrator.py
"""PipelineEngine: the entry point the surrounding application calls.

One call to execute_pipeline() runs one task from start to a terminal
status:

    1. Load the task (it must exist and must not be terminal)
    2. Load the feature's pipeline definition; a load-time error fails the
       task straight away, before any step row is written
    3. Mark the task processing and walk the graph
    4. Finalize the task through its guarded terminal transition
    5. Settle quota exactly once (confirm on success, refund on failure)

The engine is thread-safe; tasks are independent and may run
concurrently from separate caller threads.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from conduit.contracts.audit import Task
from conduit.contracts.context import ExecutionContext
from conduit.contracts.enums import CancelReason, ErrorKind, TaskStatus
from conduit.contracts.errors import ConduitError, StepError, TaskStateError, make_step_error
from conduit.contracts.results import TaskOutcome
from conduit.core.config import ConduitSettings
from conduit.core.content_audit import ContentAuditor
from conduit.core.loader import PipelineLoader, SchemaRepository
from conduit.core.logging import bound_task_context, get_logger
from conduit.core.persistence.database import ConduitDB
from conduit.core.persistence.steps import StepRecorder
from conduit.core.persistence.tasks import TaskStore
from conduit.core.quota import QuotaCompensator, QuotaService
from conduit.engine.cancellation import CancelToken
from conduit.engine.clock import Clock
from conduit.engine.invoker import ProviderInvoker
from conduit.engine.scheduler import GraphWalker, WalkResult
from conduit.plugins.manager import ProviderRegistry

logger = get_logger(__name__)


def _result_urls(artifacts: Mapping[str, Any]) -> list[str]:
    urls = artifacts.get("result_urls")
    if isinstance(urls, list) and all(isinstance(u, str) for u in urls):
        return list(urls)
    return []


def _stored_outcome(task: Task) -> TaskOutcome:
    error: StepError | None = None
    if task.error_kind is not None:
        error = make_step_error(task.error_kind, task.error_message or "")
    return TaskOutcome(
        task_id=task.task_id,
        status=task.status,
        artifacts=dict(task.artifacts or {}),
        result_urls=list(task.result_urls),
        error=error,
        failed_node_id=task.failed_node_id,
    )


class PipelineEngine:
    """Runs tasks against their feature's pipeline.

    Example:
        engine = PipelineEngine.from_settings(settings, db, SqlSchemaRepository(db), quota)
        outcome = engine.execute_pipeline(task.task_id, "txt2img", {"prompt": "a cat"})
        if not outcome.succeeded:
            print(outcome.error["kind"], outcome.failed_node_id)
    """

    def __init__(
        self,
        *,
        tasks: TaskStore,
        loader: PipelineLoader,
        walker: GraphWalker,
        compensator: QuotaCompensator,
        deadline_seconds: float | None = None,
    ) -> None:
        self._tasks = tasks
        self._loader = loader
        self._walker = walker
        self._compensator = compensator
        self._deadline_seconds = deadline_seconds
        self._active: dict[str, CancelToken] = {}
        self._active_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: ConduitSettings,
        db: ConduitDB,
        repository: SchemaRepository,
        quota: QuotaService,
        *,
        auditor: ContentAuditor | None = None,
        registry: ProviderRegistry | None = None,
        clock: Clock | None = None,
    ) -> PipelineEngine:
        """Wire an engine from settings.

        Without an explicit registry, the built-in provider plugins are
        registered and settings.providers are instantiated.
        """
        if registry is None:
            registry = ProviderRegistry()
            registry.register_builtin_plugins()
            registry.configure(settings.providers)

        invoker = ProviderInvoker(
            registry,
            auditor,
            polling=settings.polling,
            retry=settings.retry,
            clock=clock,
        )
        return cls(
            tasks=TaskStore(db),
            loader=PipelineLoader(repository, registry),
            walker=GraphWalker(invoker, StepRecorder(db), settings.join),
            compensator=QuotaCompensator(quota),
            deadline_seconds=settings.deadline_seconds,
        )

    @property
    def active_tasks(self) -> list[str]:
        with self._active_lock:
            return sorted(self._active)

    def cancel(self, task_id: str) -> bool:
        """Ask a running task to stop.

        Walkers stop before their next node and vendor polling is
        abandoned; the task then fails with kind 'cancelled'.

        Returns:
            True if the task was running here and this call cancelled it
        """
        with self._active_lock:
            token = self._active.get(task_id)
        if token is None:
            return False
        cancelled = token.cancel(CancelReason.TASK_CANCELLED)
        if cancelled:
            logger.info("task_cancel_requested", task_id=task_id)
        return cancelled

    def execute_pipeline(
        self,
        task_id: str,
        feature_id: str,
        input_data: Mapping[str, Any] | None = None,
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> TaskOutcome:
        """Run a task to a terminal status and return its outcome.

        Pipeline problems (load errors, provider failures, timeouts, audit
        rejections, cancellation) are reported in the returned outcome.

        Raises:
            TaskNotFoundError: If the task does not exist
            TaskStateError: If the task is terminal or already running
        """
        task = self._tasks.require_task(task_id)
        if task.status.is_terminal:
            raise TaskStateError(f"Task {task_id} is already {task.status}; a rerun needs a new task")

        root = CancelToken()
        with self._active_lock:
            if task_id in self._active:
                raise TaskStateError(f"Task {task_id} is already running")
            self._active[task_id] = root

        try:
            with bound_task_context(task_id=task_id, feature_id=feature_id):
                return self._execute(task, feature_id, input_data or {}, metadata or {}, root)
        finally:
            with self._active_lock:
                self._active.pop(task_id, None)

    def _execute(
        self,
        task: Task,
        feature_id: str,
        input_data: Mapping[str, Any],
        metadata: Mapping[str, Any],
        root: CancelToken,
    ) -> TaskOutcome:
        try:
            definition = self._loader.load(feature_id)
        except ConduitError as e:
            logger.warning("pipeline_load_failed", kind=e.kind.value, error=str(e))
            outcome = TaskOutcome(task_id=task.task_id, status=TaskStatus.FAILED, error=e.to_step_error())
            return self._finish(task, outcome)

        self._tasks.mark_processing(task.task_id, definition.schema_ref)
        logger.info("task_started", schema_ref=definition.schema_ref, source_format=definition.source_format)

        timer: threading.Timer | None = None
        if self._deadline_seconds is not None:
            timer = threading.Timer(self._deadline_seconds, root.cancel, args=(CancelReason.DEADLINE,))
            timer.daemon = True
            timer.start()

        context = ExecutionContext.initial(task.task_id, input_data, metadata)
        try:
            result = self._walker.run(task.task_id, definition, context, root)
        except Exception as e:
            # Infrastructure failure: the task still fails and is refunded
            logger.exception("task_crashed", error=str(e))
            outcome = TaskOutcome(
                task_id=task.task_id,
                status=TaskStatus.FAILED,
                error=make_step_error(ErrorKind.PROVIDER_ERROR, f"Engine error: {type(e).__name__}: {e}"),
            )
            self._finish(task, outcome)
            raise
        finally:
            if timer is not None:
                timer.cancel()

        return self._finish(task, self._outcome(task.task_id, result))

    @staticmethod
    def _outcome(task_id: str, result: WalkResult) -> TaskOutcome:
        if result.succeeded:
            artifacts = result.context.to_dict()
            return TaskOutcome(
                task_id=task_id,
                status=TaskStatus.SUCCESS,
                artifacts=artifacts,
                result_urls=_result_urls(artifacts),
            )
        assert result.failure is not None
        return TaskOutcome(
            task_id=task_id,
            status=TaskStatus.FAILED,
            error=result.failure.to_step_error(),
            failed_node_id=result.failed_node_id,
        )

    def _finish(self, task: Task, outcome: TaskOutcome) -> TaskOutcome:
        """Finalize the task and settle quota, both at most once.

        If another writer finalized the task first, the stored terminal
        state is returned and quota is left to that writer.
        """
        if not self._tasks.finalize(outcome):
            return _stored_outcome(self._tasks.require_task(task.task_id))
        outcome = self._compensator.on_terminal(task, outcome)
        logger.info(
            "task_finished",
            status=outcome.status.value,
            error_kind=outcome.error["kind"] if outcome.error is not None else None,
            failed_node_id=outcome.failed_node_id,
            compensation_error=outcome.compensation_error,
        )
        return outcome
