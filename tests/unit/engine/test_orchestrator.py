# tests/unit/engine/test_orchestrator.py
"""Tests for PipelineEngine: task lifecycle, load failures, cancellation, deadlines."""

import threading
import time
from collections.abc import Callable
from typing import Any

import pytest

from conduit.contracts.enums import ErrorKind, StepStatus, TaskStatus, VendorJobState
from conduit.contracts.errors import TaskNotFoundError, TaskStateError, make_step_error
from conduit.contracts.results import TaskOutcome
from conduit.core.config import ConduitSettings, PollingSettings, ProviderInstanceSettings
from conduit.core.loader import InMemorySchemaRepository
from conduit.core.persistence import ConduitDB, StepRecorder, TaskStore
from conduit.engine.orchestrator import PipelineEngine
from conduit.plugins.base import BaseSyncProvider
from conduit.plugins.context import ProviderContext
from tests.fixtures.graphs import fork_join, linear
from tests.fixtures.harness import EngineHarness
from tests.fixtures.providers import RecordingQuota, StubAuditor, StubSync, StubVendor

type HarnessFactory = Callable[..., EngineHarness]


class TestSuccessfulRuns:
    def test_linear_success(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({"gen": StubSync({"image": "a.png"})})

        outcome = harness.run(linear("gen"), {"prompt": "cat"})

        assert outcome.succeeded
        assert outcome.artifacts == {"prompt": "cat", "image": "a.png"}
        task = harness.tasks.require_task(outcome.task_id)
        assert task.status == TaskStatus.SUCCESS
        assert task.artifacts == {"prompt": "cat", "image": "a.png"}
        assert task.schema_ref == "feature-schema"
        assert harness.quota.refunds == []
        assert harness.quota.confirmed == [outcome.task_id]

    def test_result_urls_extracted(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({"render": StubVendor()}, auditor=StubAuditor())

        outcome = harness.run(linear("render"))

        assert outcome.result_urls == ["https://cdn.example/out.png"]
        assert harness.tasks.require_task(outcome.task_id).result_urls == ["https://cdn.example/out.png"]

    def test_metadata_reaches_providers(self, make_harness: HarnessFactory) -> None:
        gen = StubSync({"ok": True})
        harness = make_harness({"gen": gen})
        harness.add_feature(linear("gen"))
        task = harness.tasks.create_task("u1", "feature")

        harness.engine.execute_pipeline(task.task_id, "feature", {}, metadata={"locale": "en-GB"})

        assert dict(gen.contexts[0].metadata) == {"locale": "en-GB"}


class TestFailedRuns:
    def test_provider_failure_refunds_once(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({"gen": StubSync(error=RuntimeError("gpu oom"))})

        outcome = harness.run(linear("gen"), quota_amount=3)

        assert outcome.status == TaskStatus.FAILED
        assert outcome.failed_node_id == "p0"
        assert outcome.error is not None and outcome.error["kind"] == "provider_error"
        assert harness.quota.refunds == [
            {"user_id": "user-1", "amount": 3, "reason": f"task {outcome.task_id} failed (provider_error)", "task_id": outcome.task_id}
        ]
        task = harness.tasks.require_task(outcome.task_id)
        assert task.error_kind == ErrorKind.PROVIDER_ERROR
        assert task.failed_node_id == "p0"

    def test_unknown_feature_fails_without_steps(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({})
        task = harness.tasks.create_task("u1", "ghost-feature")

        outcome = harness.engine.execute_pipeline(task.task_id, "ghost-feature")

        assert outcome.error is not None and outcome.error["kind"] == "schema_not_found"
        assert harness.steps(task.task_id) == []
        assert len(harness.quota.refunds) == 1
        assert harness.tasks.require_task(task.task_id).status == TaskStatus.FAILED

    def test_invalid_graph_fails_without_steps(self, make_harness: HarnessFactory) -> None:
        gen = StubSync()
        harness = make_harness({"gen": gen})
        schema = linear("gen")
        schema["edges"].append({"source": "p0", "target": "start"})

        outcome = harness.run(schema)

        assert outcome.error is not None and outcome.error["kind"] == "invalid_graph"
        assert gen.calls == 0
        assert harness.steps(outcome.task_id) == []

    def test_unsupported_ref_fails_without_steps(self, make_harness: HarnessFactory) -> None:
        gen = StubSync()
        harness = make_harness({"gen": gen})

        outcome = harness.run(linear("gen", "missing"))

        assert outcome.error is not None and outcome.error["kind"] == "unsupported_provider_ref"
        assert gen.calls == 0
        assert harness.steps(outcome.task_id) == []

    def test_refund_failure_is_surfaced(self, make_harness: HarnessFactory) -> None:
        harness = make_harness(
            {"gen": StubSync(error=RuntimeError("boom"))},
            quota=RecordingQuota(refund_error=ConnectionError("ledger down")),
        )

        outcome = harness.run(linear("gen"))

        assert outcome.status == TaskStatus.FAILED
        assert outcome.compensation_error is not None and "ledger down" in outcome.compensation_error
        assert harness.tasks.require_task(outcome.task_id).status == TaskStatus.FAILED


class TestTaskGuards:
    def test_missing_task(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({})

        with pytest.raises(TaskNotFoundError):
            harness.engine.execute_pipeline("ghost", "feature")

    def test_terminal_task_cannot_rerun(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({"gen": StubSync(error=RuntimeError("boom"))})
        outcome = harness.run(linear("gen"))

        with pytest.raises(TaskStateError, match="already failed"):
            harness.engine.execute_pipeline(outcome.task_id, "feature")

        assert len(harness.quota.refunds) == 1

    def test_concurrent_execution_of_same_task_rejected(self, make_harness: HarnessFactory) -> None:
        gen = StubSync({"ok": True}, hold_until_cancelled=5.0)
        harness = make_harness({"gen": gen})
        harness.add_feature(linear("gen"))
        task = harness.tasks.create_task("u1", "feature")
        runner = threading.Thread(target=harness.engine.execute_pipeline, args=(task.task_id, "feature"))
        runner.start()
        try:
            assert gen.started.wait(5.0)

            with pytest.raises(TaskStateError, match="already running"):
                harness.engine.execute_pipeline(task.task_id, "feature")
        finally:
            harness.engine.cancel(task.task_id)
            runner.join(5.0)


class TestCancellation:
    def test_cancel_running_task(self, make_harness: HarnessFactory) -> None:
        gen = StubSync({"ok": True}, hold_until_cancelled=5.0)
        after = StubSync()
        harness = make_harness({"gen": gen, "after": after})
        harness.add_feature(linear("gen", "after"))
        task = harness.tasks.create_task("u1", "feature")
        outcomes: list[Any] = []
        runner = threading.Thread(
            target=lambda: outcomes.append(harness.engine.execute_pipeline(task.task_id, "feature"))
        )
        runner.start()
        assert gen.started.wait(5.0)
        assert harness.engine.active_tasks == [task.task_id]

        assert harness.engine.cancel(task.task_id) is True
        runner.join(5.0)

        (outcome,) = outcomes
        assert outcome.status == TaskStatus.FAILED
        assert outcome.error["kind"] == "cancelled"
        assert outcome.failed_node_id == "p1"
        assert after.calls == 0
        assert len(harness.quota.refunds) == 1
        assert harness.engine.active_tasks == []

    def test_cancel_unknown_task(self, make_harness: HarnessFactory) -> None:
        assert make_harness({}).engine.cancel("nope") is False

    def test_cancel_abandons_vendor_polling(self, make_harness: HarnessFactory) -> None:
        vendor = StubVendor([VendorJobState.RUNNING])
        harness = make_harness(
            {"render": vendor},
            polling=PollingSettings(interval_seconds=0.01, max_attempts=100_000, timeout_seconds=None),
        )
        harness.add_feature(linear("render"))
        task = harness.tasks.create_task("u1", "feature")
        outcomes: list[Any] = []
        runner = threading.Thread(
            target=lambda: outcomes.append(harness.engine.execute_pipeline(task.task_id, "feature"))
        )
        runner.start()
        while not vendor.submitted:
            time.sleep(0.005)

        harness.engine.cancel(task.task_id)
        runner.join(5.0)

        (outcome,) = outcomes
        assert outcome.error["kind"] == "cancelled"
        step = harness.steps_by_node(task.task_id)["p0"]
        assert step.status == StepStatus.FAILED
        assert step.error is not None and step.error["vendor_job_id"] == "job-1"


class TestDeadline:
    def test_deadline_fails_task_as_timeout(self, make_harness: HarnessFactory) -> None:
        gen = StubSync({"ok": True}, hold_until_cancelled=5.0)
        after = StubSync()
        harness = make_harness({"gen": gen, "after": after}, deadline_seconds=0.05)

        outcome = harness.run(linear("gen", "after"))

        assert outcome.status == TaskStatus.FAILED
        assert outcome.error is not None and outcome.error["kind"] == "timeout"
        assert outcome.error["message"] == "Task deadline exceeded"
        assert after.calls == 0

    def test_fast_task_beats_deadline(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({"gen": StubSync({"ok": True})}, deadline_seconds=5.0)

        assert harness.run(linear("gen")).succeeded


class _CrashingRecorder(StepRecorder):
    def record_start(self, task_id: str, node_id: str, branch_id: str, provider_ref: str) -> str:
        raise RuntimeError("step store unavailable")


class TestEngineErrors:
    def test_crash_still_finalizes_and_refunds(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({"a": StubSync(), "b": StubSync()})
        harness.engine._walker._recorder = _CrashingRecorder(harness.db)

        with pytest.raises(RuntimeError, match="step store unavailable"):
            harness.run(fork_join("ALL", ["a", "b"]))

        (refund,) = harness.quota.refunds
        task = harness.tasks.require_task(refund["task_id"])
        assert task.status == TaskStatus.FAILED
        assert task.error_message is not None and task.error_message.startswith("Engine error")


class _FinalizingProvider(BaseSyncProvider):
    """Finalizes its own task from outside the engine mid-run."""

    name = "finalizing"

    def __init__(self, tasks: TaskStore) -> None:
        super().__init__({})
        self.tasks = tasks

    def execute(self, ctx: ProviderContext) -> Any:
        self.tasks.finalize(
            TaskOutcome(
                task_id=ctx.task_id,
                status=TaskStatus.FAILED,
                error=make_step_error(ErrorKind.CANCELLED, "Cancelled by operator"),
            )
        )
        return {"image": "a.png"}


class TestConcurrentFinalize:
    def test_stored_terminal_state_is_returned(self, make_harness: HarnessFactory) -> None:
        harness = make_harness({})
        harness.registry.register_instance("gen", _FinalizingProvider(harness.tasks))

        outcome = harness.run(linear("gen"))

        task = harness.tasks.require_task(outcome.task_id)
        assert task.status == TaskStatus.FAILED
        assert outcome.status == TaskStatus.FAILED
        assert outcome.error == {"kind": "cancelled", "message": "Cancelled by operator"}
        assert outcome.artifacts == {}
        assert harness.quota.refunds == []
        assert harness.quota.confirmed == []


class TestFromSettings:
    def test_wires_builtin_providers(self) -> None:
        settings = ConduitSettings(
            providers=[ProviderInstanceSettings(ref="echo", plugin="passthrough", options={"outputs": {"caption": "hi"}})]
        )
        db = ConduitDB.in_memory()
        try:
            repository = InMemorySchemaRepository()
            repository.add("caption", "caption-schema", linear("echo"))
            quota = RecordingQuota()
            engine = PipelineEngine.from_settings(settings, db, repository, quota)
            task = TaskStore(db).create_task("u1", "caption")

            outcome = engine.execute_pipeline(task.task_id, "caption", {"prompt": "cat"})

            assert outcome.succeeded
            assert outcome.artifacts["caption"] == "hi"
            assert quota.confirmed == [task.task_id]
        finally:
            db.close()
