# tests/unit/engine/test_joins.py
"""Tests for JoinBarrier decisions under ALL, ANY and FIRST."""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor

import pytest

from conduit.contracts.context import ExecutionContext
from conduit.contracts.enums import CancelReason, ErrorKind, JoinStrategy
from conduit.contracts.results import ProviderFailure
from conduit.contracts.types import BranchID, NodeID
from conduit.engine.cancellation import CancelToken
from conduit.engine.joins import BranchOutcome, JoinBarrier


def _ok(index: int) -> BranchOutcome:
    return BranchOutcome(
        branch_index=index,
        branch_id=BranchID(f"main/fork.{index}"),
        context=ExecutionContext("t1", {f"out{index}": index}),
    )


def _failed(index: int) -> BranchOutcome:
    return BranchOutcome(
        branch_index=index,
        branch_id=BranchID(f"main/fork.{index}"),
        failure=ProviderFailure(ErrorKind.PROVIDER_ERROR, f"branch {index} failed"),
        failed_node_id=NodeID(f"b{index}_0"),
    )


def _barrier(strategy: JoinStrategy, width: int = 3) -> tuple[JoinBarrier, list[CancelToken]]:
    tokens = [CancelToken() for _ in range(width)]
    return JoinBarrier(NodeID("join"), strategy, tokens), tokens


def _wait_for_arrivals(barrier: JoinBarrier, count: int) -> None:
    deadline = time.monotonic() + 5.0
    while len(barrier._arrivals) < count:
        assert time.monotonic() < deadline, "branches never arrived"
        time.sleep(0.001)


class TestAllStrategy:
    def test_every_branch_contributes(self) -> None:
        barrier, tokens = _barrier(JoinStrategy.ALL)
        for index in (2, 0, 1):
            assert barrier.arrive(_ok(index)) is True

        decision = barrier.wait()

        assert decision.succeeded
        assert [a.branch_index for a in decision.arrivals] == [2, 0, 1]
        assert [a.arrival_seq for a in decision.arrivals] == [0, 1, 2]
        assert decision.winner_index is None
        assert not any(t.is_cancelled for t in tokens)

    def test_waits_for_the_last_branch(self) -> None:
        barrier, _ = _barrier(JoinStrategy.ALL)
        with ThreadPoolExecutor(max_workers=1) as pool:
            pending = pool.submit(barrier.wait)
            barrier.arrive(_ok(0))
            barrier.arrive(_ok(1))
            time.sleep(0.05)
            assert not pending.done()

            barrier.arrive(_ok(2))
            assert pending.result(timeout=5).succeeded

    def test_earliest_failure_fails_the_join(self) -> None:
        barrier, tokens = _barrier(JoinStrategy.ALL)
        barrier.arrive(_ok(0))
        barrier.arrive(_failed(2))
        barrier.arrive(_failed(1))

        decision = barrier.wait()

        assert not decision.succeeded
        assert decision.failure is not None
        assert decision.failure.branch_index == 2
        assert not any(t.is_cancelled for t in tokens)


class TestAnyStrategy:
    def test_first_success_wins_and_others_are_ignored(self) -> None:
        barrier, tokens = _barrier(JoinStrategy.ANY)
        barrier.arrive(_failed(0))
        barrier.arrive(_ok(1))

        decision = barrier.wait()

        assert decision.succeeded
        assert decision.winner_index == 1
        assert [a.branch_index for a in decision.arrivals] == [1]
        assert tokens[1].reason is None
        assert tokens[2].reason == CancelReason.IGNORED

    def test_does_not_decide_on_failures_alone(self) -> None:
        barrier, _ = _barrier(JoinStrategy.ANY, width=2)
        with ThreadPoolExecutor(max_workers=1) as pool:
            pending = pool.submit(barrier.wait)
            barrier.arrive(_failed(0))
            time.sleep(0.05)
            assert not pending.done()

            barrier.arrive(_ok(1))
            assert pending.result(timeout=5).winner_index == 1

    def test_all_failed(self) -> None:
        barrier, _ = _barrier(JoinStrategy.ANY)
        barrier.arrive(_failed(1))
        barrier.arrive(_failed(0))
        barrier.arrive(_failed(2))

        decision = barrier.wait()

        assert not decision.succeeded
        assert decision.failure is not None and decision.failure.branch_index == 1
        assert decision.winner_index is None

    def test_simultaneous_successes_go_to_lowest_index(self) -> None:
        barrier, tokens = _barrier(JoinStrategy.ANY)
        barrier.arrive(_ok(2))
        barrier.arrive(_ok(1))

        decision = barrier.wait()

        assert decision.winner_index == 1
        assert tokens[2].reason == CancelReason.IGNORED


class TestFirstStrategy:
    def test_arrival_blocks_until_decided(self) -> None:
        barrier, tokens = _barrier(JoinStrategy.FIRST)
        with ThreadPoolExecutor(max_workers=2) as pool:
            verdict = pool.submit(barrier.arrive, _ok(1))
            _wait_for_arrivals(barrier, 1)
            time.sleep(0.02)
            assert not verdict.done()

            decision = barrier.wait()

            assert verdict.result(timeout=5) is True
        assert decision.winner_index == 1
        assert tokens[0].reason == CancelReason.SUPERSEDED
        assert tokens[2].reason == CancelReason.SUPERSEDED
        assert tokens[1].reason is None

    def test_late_arrival_loses(self) -> None:
        barrier, _ = _barrier(JoinStrategy.FIRST, width=2)
        with ThreadPoolExecutor(max_workers=1) as pool:
            winner = pool.submit(barrier.arrive, _ok(1))
            barrier.wait()
            assert winner.result(timeout=5) is True

        assert barrier.arrive(_ok(0)) is False

    def test_failure_decides(self) -> None:
        barrier, tokens = _barrier(JoinStrategy.FIRST, width=2)
        with ThreadPoolExecutor(max_workers=1) as pool:
            verdict = pool.submit(barrier.arrive, _failed(0))
            decision = barrier.wait()
            assert verdict.result(timeout=5) is True

        assert not decision.succeeded
        assert decision.failure is not None and decision.failure.branch_index == 0
        assert tokens[1].reason == CancelReason.SUPERSEDED

    def test_simultaneous_arrivals_go_to_lowest_index(self) -> None:
        barrier, _ = _barrier(JoinStrategy.FIRST)
        with ThreadPoolExecutor(max_workers=2) as pool:
            verdicts: dict[int, Future[bool]] = {
                index: pool.submit(barrier.arrive, _ok(index)) for index in (2, 1)
            }
            _wait_for_arrivals(barrier, 2)

            decision = barrier.wait()

            assert decision.winner_index == 1
            assert verdicts[1].result(timeout=5) is True
            assert verdicts[2].result(timeout=5) is False


class TestAbort:
    def test_abort_raises_in_owner(self) -> None:
        barrier, _ = _barrier(JoinStrategy.ALL)
        threading.Timer(0.02, barrier.abort, args=(RuntimeError("step store down"),)).start()

        with pytest.raises(RuntimeError, match="step store down"):
            barrier.wait()

    def test_abort_releases_blocked_first_arrivals(self) -> None:
        barrier, _ = _barrier(JoinStrategy.FIRST)
        with ThreadPoolExecutor(max_workers=1) as pool:
            verdict = pool.submit(barrier.arrive, _ok(0))
            _wait_for_arrivals(barrier, 1)

            barrier.abort(RuntimeError("owner crashed"))

            assert verdict.result(timeout=5) is False

    def test_first_abort_wins(self) -> None:
        barrier, _ = _barrier(JoinStrategy.ALL)
        barrier.abort(RuntimeError("first"))
        barrier.abort(RuntimeError("second"))

        with pytest.raises(RuntimeError, match="first"):
            barrier.wait()
