# src/conduit/engine/scheduler.py
"""GraphWalker: walks a PipelineDefinition for one task.

The walker follows single edges on its own thread. At a fork it starts one
branch walker per outgoing edge on a thread pool, each with a snapshot of
the current context and a child cancel token, then waits on the fork's
JoinBarrier. When the join is decided it merges the contributing contexts
and carries on after the paired join.

Only provider nodes produce step rows. Every step row is written before
run() returns, including rows of branches that lost a join and were left
to finish on their own.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from conduit.contracts.context import ExecutionContext
from conduit.contracts.enums import CancelReason, ErrorKind, StepStatus
from conduit.contracts.errors import StepError, make_step_error
from conduit.contracts.results import ProviderFailure, ProviderResult
from conduit.contracts.types import ROOT_BRANCH, BranchID, NodeID, child_branch_id
from conduit.core.config import JoinSettings
from conduit.core.dag.graph import PipelineDefinition
from conduit.core.dag.models import EndNode, ForkNode, JoinNode, ProviderNode, StartNode
from conduit.core.logging import bound_task_context, get_logger
from conduit.core.persistence.steps import StepRecorder
from conduit.engine.cancellation import CancelToken
from conduit.engine.invoker import ProviderInvoker
from conduit.engine.joins import BranchOutcome, JoinBarrier

logger = get_logger(__name__)


@dataclass(frozen=True)
class WalkResult:
    """Where a path of the graph ended up.

    Attributes:
        context: Final context (on failure, the context before the failing node)
        failure: Error that ended the path, if it failed
        failed_node_id: Node that produced the failure
    """

    context: ExecutionContext
    failure: ProviderFailure | None = None
    failed_node_id: NodeID | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


type ArrivalHook = Callable[[WalkResult], bool]


def interruption(cancel: CancelToken, vendor_job_id: str | None = None) -> ProviderFailure:
    """Describe why a cancelled path stopped."""
    match cancel.reason:
        case CancelReason.DEADLINE:
            return ProviderFailure(ErrorKind.TIMEOUT, "Task deadline exceeded", vendor_job_id=vendor_job_id)
        case CancelReason.TASK_CANCELLED:
            return ProviderFailure(ErrorKind.CANCELLED, "Task cancelled", vendor_job_id=vendor_job_id)
        case reason:
            return ProviderFailure(ErrorKind.CANCELLED, f"Branch stopped ({reason})", vendor_job_id=vendor_job_id)


class GraphWalker:
    """Executes pipeline definitions.

    Holds no per-task state, so one walker serves every task of an engine.

    Example:
        walker = GraphWalker(invoker, recorder)
        result = walker.run(task_id, definition, ExecutionContext.initial(task_id, {"prompt": "cat"}))
        if result.succeeded:
            artifacts = result.context.to_dict()
    """

    def __init__(
        self,
        invoker: ProviderInvoker,
        recorder: StepRecorder,
        join_settings: JoinSettings | None = None,
    ) -> None:
        self._invoker = invoker
        self._recorder = recorder
        self._join_settings = join_settings or JoinSettings()

    def run(
        self,
        task_id: str,
        definition: PipelineDefinition,
        context: ExecutionContext,
        cancel: CancelToken | None = None,
    ) -> WalkResult:
        """Walk from the start node to an end node.

        Provider failures come back in the WalkResult. Exceptions escape
        only for infrastructure problems (e.g. the step store failing), and
        only after every branch thread has finished.
        """
        run = _Run(self, task_id, definition)
        return run.execute(context, cancel or CancelToken())


class _Run:
    """State of one walk: the definition and the branch futures it spawned."""

    def __init__(self, walker: GraphWalker, task_id: str, definition: PipelineDefinition) -> None:
        self._invoker = walker._invoker
        self._recorder = walker._recorder
        self._join_settings = walker._join_settings
        self._task_id = task_id
        self._definition = definition
        self._futures: list[Future[WalkResult]] = []
        self._futures_lock = threading.Lock()

    def execute(self, context: ExecutionContext, cancel: CancelToken) -> WalkResult:
        first = self._definition.next_node(self._definition.start_node_id)
        try:
            result = self._walk(first, ROOT_BRANCH, context, cancel)
        finally:
            errors = self._drain()
        if errors:
            raise errors[0]
        return result

    def _track(self, future: Future[WalkResult]) -> None:
        with self._futures_lock:
            self._futures.append(future)

    def _drain(self) -> list[BaseException]:
        """Wait for every branch thread, including ones spawned while waiting."""
        seen = 0
        while True:
            with self._futures_lock:
                futures = list(self._futures)
            if len(futures) == seen:
                break
            seen = len(futures)
            wait(futures)

        errors = [e for e in (f.exception() for f in futures) if e is not None]
        for error in errors:
            logger.error("branch_crashed", task_id=self._task_id, error=f"{type(error).__name__}: {error}")
        return errors

    def _walk(
        self,
        node_id: NodeID,
        branch_id: BranchID,
        context: ExecutionContext,
        cancel: CancelToken,
        *,
        stop_at: NodeID | None = None,
        arrive: ArrivalHook | None = None,
    ) -> WalkResult:
        """Follow edges from node_id until an end node, stop_at, or a failure.

        Branch walkers pass the paired join as stop_at and report their
        completion through arrive (exactly once, on every exit).
        """

        def finish(result: WalkResult) -> WalkResult:
            if arrive is not None:
                arrive(result)
            return result

        current = node_id
        while True:
            if current == stop_at:
                return finish(WalkResult(context))
            if cancel.is_cancelled:
                logger.info("branch_interrupted", branch_id=branch_id, node_id=current, reason=str(cancel.reason))
                return finish(WalkResult(context, failure=interruption(cancel), failed_node_id=current))

            match self._definition.node(current):
                case ProviderNode() as node:
                    result, next_id = self._run_provider(node, branch_id, context, cancel, stop_at, arrive)
                    if next_id is None:
                        return result
                    context = result.context
                    current = next_id
                case ForkNode() as fork:
                    result = self._run_fork(fork, branch_id, context, cancel)
                    if not result.succeeded:
                        return finish(result)
                    context = result.context
                    current = self._definition.next_node(self._definition.join_for(fork.node_id))
                case EndNode():
                    return finish(WalkResult(context))
                case JoinNode() | StartNode() as node:
                    raise RuntimeError(f"Walker on {branch_id} reached unexpected node {node.node_id!r}")

    def _run_provider(
        self,
        node: ProviderNode,
        branch_id: BranchID,
        context: ExecutionContext,
        cancel: CancelToken,
        stop_at: NodeID | None,
        arrive: ArrivalHook | None,
    ) -> tuple[WalkResult, NodeID | None]:
        """Execute one provider node and record its step.

        Returns the walk state after the node and the next node id, or
        None as next node when the path ended here (already reported to
        arrive for branch walkers).
        """
        step_id = self._recorder.record_start(self._task_id, node.node_id, branch_id, node.provider_ref)
        result = self._invoker.invoke(node, context, branch_id=branch_id, cancel=cancel)

        if result.success:
            next_id = self._definition.next_node(node.node_id)
            walk = WalkResult(context.with_outputs(result.data))
            ends_path = next_id == stop_at
        else:
            failure = result.error
            assert failure is not None
            if result.cancelled:
                failure = interruption(cancel, failure.vendor_job_id)
            next_id = None
            walk = WalkResult(context, failure=failure, failed_node_id=node.node_id)
            ends_path = True

        # A branch's last step is judged at the join before it is written
        counts = arrive(walk) if ends_path and arrive is not None else True
        self._record_end(step_id, result, walk.failure, cancel, counts)

        if ends_path and arrive is not None:
            return walk, None
        return walk, next_id

    def _record_end(
        self,
        step_id: str,
        result: ProviderResult,
        failure: ProviderFailure | None,
        cancel: CancelToken,
        counts: bool,
    ) -> None:
        superseded = not counts or cancel.reason == CancelReason.SUPERSEDED
        if not superseded and result.cancelled:
            superseded = cancel.reason == CancelReason.IGNORED

        if superseded:
            vendor_job_id = failure.vendor_job_id if failure is not None else None
            error: StepError = make_step_error(
                ErrorKind.CANCELLED,
                "Superseded: another branch decided the join",
                vendor_job_id=vendor_job_id,
                attempts=result.attempts,
            )
            output = result.data if result.success else None
            self._recorder.record_end(step_id, StepStatus.SUPERSEDED, output=output, error=error, attempts=result.attempts)
        elif result.success:
            self._recorder.record_end(step_id, StepStatus.SUCCESS, output=result.data, attempts=result.attempts)
        else:
            assert failure is not None
            self._recorder.record_end(
                step_id,
                StepStatus.FAILED,
                error=failure.to_step_error(attempts=result.attempts),
                attempts=result.attempts,
            )

    def _run_fork(
        self,
        fork: ForkNode,
        branch_id: BranchID,
        context: ExecutionContext,
        cancel: CancelToken,
    ) -> WalkResult:
        """Run every branch of a fork and return the joined result."""
        join_id = self._definition.join_for(fork.node_id)
        join = self._definition.node(join_id)
        assert isinstance(join, JoinNode)
        heads = self._definition.branches(fork.node_id)
        tokens = [cancel.child() for _ in heads]
        barrier = JoinBarrier(join_id, join.strategy, tokens)

        logger.info(
            "fork_started",
            fork_id=fork.node_id,
            join_id=join_id,
            branch_id=branch_id,
            branches=len(heads),
            strategy=join.strategy.value,
        )
        executor = ThreadPoolExecutor(
            max_workers=min(len(heads), self._join_settings.max_branch_workers),
            thread_name_prefix=f"conduit-{fork.node_id}",
        )
        try:
            for index, (head, token) in enumerate(zip(heads, tokens, strict=True)):
                future = executor.submit(
                    self._run_branch,
                    index,
                    child_branch_id(branch_id, fork.node_id, index),
                    head,
                    context.fork(),
                    token,
                    join_id,
                    barrier,
                )
                self._track(future)
            decision = barrier.wait()
        except BaseException as e:
            # Release branches blocked on a FIRST arrival
            barrier.abort(e)
            raise
        finally:
            # Losing branches finish in the background; _drain() collects them
            executor.shutdown(wait=False)

        if not decision.succeeded:
            assert decision.failure is not None
            logger.info(
                "join_failed",
                join_id=join_id,
                branch_id=branch_id,
                failed_branch=decision.failure.branch_id,
                failed_node_id=decision.failure.failed_node_id,
            )
            return WalkResult(
                context,
                failure=decision.failure.failure,
                failed_node_id=decision.failure.failed_node_id,
            )

        merged = ExecutionContext.merge(context, decision.arrivals, self._join_settings.merge_policy)
        logger.info(
            "join_completed",
            join_id=join_id,
            branch_id=branch_id,
            contributors=[a.branch_index for a in decision.arrivals],
        )
        return WalkResult(merged)

    def _run_branch(
        self,
        index: int,
        branch_id: BranchID,
        head: NodeID,
        context: ExecutionContext,
        cancel: CancelToken,
        join_id: NodeID,
        barrier: JoinBarrier,
    ) -> WalkResult:
        def arrive(result: WalkResult) -> bool:
            outcome = BranchOutcome(
                branch_index=index,
                branch_id=branch_id,
                context=result.context if result.succeeded else None,
                failure=result.failure,
                failed_node_id=result.failed_node_id,
            )
            return barrier.arrive(outcome)

        with bound_task_context(task_id=self._task_id, branch_id=branch_id):
            try:
                return self._walk(head, branch_id, context, cancel, stop_at=join_id, arrive=arrive)
            except BaseException as e:
                barrier.abort(e)
                raise


