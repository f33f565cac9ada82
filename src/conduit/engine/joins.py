# src/conduit/engine/joins.py
"""JoinBarrier: where the branches of one fork meet.

Branch walkers arrive at the barrier when their branch completes (reaching
the paired join, or failing on the way). The walker that owns the fork
waits on the barrier for a JoinDecision, whose shape depends on the join
strategy:

    ALL:   decided when every branch has arrived; fails if any branch failed
    ANY:   decided by the first successful arrival; fails once all have failed
    FIRST: decided by the first arrival, successful or not

Once ANY or FIRST has a winner, the remaining branches are cancelled
(IGNORED and SUPERSEDED respectively). Under FIRST a branch's last step is
only recorded after its arrival has been judged, so a late sibling's step
is written as superseded even when its provider call came back fine.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Sequence
from dataclasses import dataclass

from conduit.contracts.context import BranchArrival, ExecutionContext
from conduit.contracts.enums import CancelReason, JoinStrategy
from conduit.contracts.results import ProviderFailure
from conduit.contracts.types import BranchID, NodeID
from conduit.core.logging import get_logger
from conduit.engine.cancellation import CancelToken

logger = get_logger(__name__)


@dataclass(frozen=True)
class BranchOutcome:
    """How one branch ended.

    Attributes:
        branch_index: Position of the branch among the fork's outgoing edges
        branch_id: Branch id of the walker
        context: Context the branch finished with (successful branches only)
        failure: Error that ended the branch, if it failed
        failed_node_id: Node that produced the failure
    """

    branch_index: int
    branch_id: BranchID
    context: ExecutionContext | None = None
    failure: ProviderFailure | None = None
    failed_node_id: NodeID | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class JoinDecision:
    """What the fork's owner continues with.

    On success, `arrivals` are the contributing branches to merge (every
    branch for ALL, the winner for ANY and FIRST). On failure, `failure`
    is the branch outcome whose error the join surfaces.
    """

    strategy: JoinStrategy
    arrivals: tuple[BranchArrival, ...] = ()
    failure: BranchOutcome | None = None
    winner_index: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class JoinBarrier:
    """Collects branch arrivals for one fork and decides the join.

    Thread-safe. Arrivals come from branch threads; wait() is called by the
    fork's owning walker. Decisions are taken in the owner's thread with
    every arrival seen so far, so arrivals that land together are ordered
    by branch index, not by which thread got the lock first.
    """

    def __init__(self, join_id: NodeID, strategy: JoinStrategy, tokens: Sequence[CancelToken]) -> None:
        self._join_id = join_id
        self._strategy = strategy
        self._tokens = tuple(tokens)
        self._cond = threading.Condition()
        self._arrivals: list[tuple[int, BranchOutcome]] = []
        self._seq = itertools.count()
        self._decision: JoinDecision | None = None
        self._error: BaseException | None = None

    @property
    def width(self) -> int:
        return len(self._tokens)

    def arrive(self, outcome: BranchOutcome) -> bool:
        """Register a branch's completion.

        Under FIRST this blocks until the join is decided, then tells the
        branch whether it won. Other strategies never block.

        Returns:
            False if the branch lost a FIRST join (its last step is
            superseded), True otherwise
        """
        with self._cond:
            self._arrivals.append((next(self._seq), outcome))
            self._cond.notify_all()
            if self._strategy != JoinStrategy.FIRST:
                return True
            while self._decision is None and self._error is None:
                self._cond.wait()
            decision = self._decision
        return decision is not None and decision.winner_index == outcome.branch_index

    def abort(self, error: BaseException) -> None:
        """Wake the owner because a branch thread died without arriving."""
        with self._cond:
            if self._error is None:
                self._error = error
            self._cond.notify_all()

    def wait(self) -> JoinDecision:
        """Block until the join is decided.

        Raises:
            BaseException: Whatever killed a branch thread before it arrived
        """
        with self._cond:
            while True:
                if self._error is not None:
                    raise self._error
                decision = self._decide()
                if decision is not None:
                    self._decision = decision
                    self._cond.notify_all()
                    break
                self._cond.wait()

        if decision.winner_index is not None:
            reason = CancelReason.SUPERSEDED if self._strategy == JoinStrategy.FIRST else CancelReason.IGNORED
            for index, token in enumerate(self._tokens):
                if index != decision.winner_index:
                    token.cancel(reason)
        logger.debug(
            "join_decided",
            join_id=self._join_id,
            strategy=self._strategy.value,
            succeeded=decision.succeeded,
            winner_index=decision.winner_index,
            arrived=len(self._arrivals),
        )
        return decision

    def _decide(self) -> JoinDecision | None:
        if not self._arrivals:
            return None
        everyone = len(self._arrivals) == self.width

        match self._strategy:
            case JoinStrategy.FIRST:
                _, first = min(self._arrivals, key=lambda a: a[1].branch_index)
                return self._single(first)
            case JoinStrategy.ANY:
                successes = [a for a in self._arrivals if a[1].succeeded]
                if successes:
                    _, winner = min(successes, key=lambda a: a[1].branch_index)
                    return self._single(winner)
                if everyone:
                    return JoinDecision(self._strategy, failure=self._earliest_failure())
                return None
            case JoinStrategy.ALL:
                if not everyone:
                    return None
                failure = self._earliest_failure()
                if failure is not None:
                    return JoinDecision(self._strategy, failure=failure)
                return JoinDecision(
                    self._strategy,
                    arrivals=tuple(self._as_arrival(seq, outcome) for seq, outcome in self._arrivals),
                )

    def _single(self, outcome: BranchOutcome) -> JoinDecision:
        if not outcome.succeeded:
            return JoinDecision(self._strategy, failure=outcome, winner_index=outcome.branch_index)
        seq = next(s for s, o in self._arrivals if o is outcome)
        return JoinDecision(
            self._strategy,
            arrivals=(self._as_arrival(seq, outcome),),
            winner_index=outcome.branch_index,
        )

    def _earliest_failure(self) -> BranchOutcome | None:
        for _, outcome in self._arrivals:
            if not outcome.succeeded:
                return outcome
        return None

    @staticmethod
    def _as_arrival(seq: int, outcome: BranchOutcome) -> BranchArrival:
        assert outcome.context is not None
        return BranchArrival(branch_index=outcome.branch_index, arrival_seq=seq, context=outcome.context)
