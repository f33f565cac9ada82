# src/conduit/engine/__init__.py
"""Execution engine: walking pipeline graphs for tasks.

- PipelineEngine: task lifecycle (load, walk, finalize, compensate)
- GraphWalker: branch walkers, forks and joins
- ProviderInvoker: sync calls and vendor submit/poll with the audit gate
- RetryManager: per-node retry with tenacity
- CancelToken: cooperative cancellation tree

Example:
    from conduit.engine import PipelineEngine

    engine = PipelineEngine.from_settings(settings, db, repository, quota)
    outcome = engine.execute_pipeline(task_id, "txt2img", {"prompt": "a cat"})
"""

from conduit.engine.cancellation import CancelToken
from conduit.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from conduit.engine.invoker import PollBudget, ProviderInvoker
from conduit.engine.joins import BranchOutcome, JoinBarrier, JoinDecision
from conduit.engine.orchestrator import PipelineEngine
from conduit.engine.retry import RetryConfig, RetryManager
from conduit.engine.scheduler import GraphWalker, WalkResult

__all__ = [
    "DEFAULT_CLOCK",
    "BranchOutcome",
    "CancelToken",
    "Clock",
    "GraphWalker",
    "JoinBarrier",
    "JoinDecision",
    "MockClock",
    "PipelineEngine",
    "PollBudget",
    "ProviderInvoker",
    "RetryConfig",
    "RetryManager",
    "SystemClock",
    "WalkResult",
]
