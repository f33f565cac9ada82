# src/conduit/core/quota.py
"""Quota compensation: refund a task's reservation exactly once on failure.

The surrounding application reserves quota before it hands a task to the
engine. The engine only settles that reservation: confirm on success,
refund on failure. QuotaCompensator guarantees the settlement runs at most
once per task in this process; LedgerQuotaService additionally makes a
refund idempotent in the database, keyed by task id.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol, runtime_checkable

from sqlalchemy import select

from conduit.contracts.audit import Task
from conduit.contracts.enums import QuotaPhase
from conduit.contracts.errors import QuotaError
from conduit.contracts.results import TaskOutcome
from conduit.core.logging import get_logger
from conduit.core.persistence._helpers import generate_id, now
from conduit.core.persistence.database import ConduitDB
from conduit.core.persistence.schema import quota_accounts_table, quota_transactions_table

logger = get_logger(__name__)


@runtime_checkable
class QuotaService(Protocol):
    """What the engine needs from the quota subsystem."""

    def refund(self, user_id: str, amount: int, reason: str, *, task_id: str) -> None: ...


@runtime_checkable
class ConfirmingQuotaService(QuotaService, Protocol):
    """A quota service that also books consumed reservations."""

    def confirm(self, task_id: str) -> None: ...


class QuotaCompensator:
    """Settles a task's quota once it reaches a terminal status.

    Thread-safe. A second on_terminal() for the same task is a no-op, so
    even a caller that retries finalization cannot refund twice.
    """

    def __init__(self, service: QuotaService) -> None:
        self._service = service
        self._lock = threading.Lock()
        self._settled: set[str] = set()

    def on_terminal(self, task: Task, outcome: TaskOutcome) -> TaskOutcome:
        """Confirm or refund, returning the outcome (with compensation_error if refunding failed)."""
        with self._lock:
            if task.task_id in self._settled:
                logger.warning("quota_already_settled", task_id=task.task_id)
                return outcome
            self._settled.add(task.task_id)

        if outcome.succeeded:
            if isinstance(self._service, ConfirmingQuotaService):
                try:
                    self._service.confirm(task.task_id)
                except Exception as e:  # quota backend boundary: never changes the task status
                    logger.error("quota_confirm_failed", task_id=task.task_id, error=str(e))
                    return replace(outcome, compensation_error=str(QuotaError(f"Confirm failed: {e}")))
            return outcome

        kind = outcome.error["kind"] if outcome.error is not None else "unknown"
        reason = f"task {task.task_id} failed ({kind})"
        try:
            self._service.refund(task.user_id, task.quota_amount, reason, task_id=task.task_id)
        except Exception as e:  # quota backend boundary: the task stays failed either way
            error = QuotaError(f"Refund of {task.quota_amount} to user {task.user_id} failed: {e}")
            logger.error("quota_refund_failed", task_id=task.task_id, user_id=task.user_id, error=str(e))
            return replace(outcome, compensation_error=str(error))

        logger.info("quota_refunded", task_id=task.task_id, user_id=task.user_id, amount=task.quota_amount)
        return outcome


class LedgerQuotaService:
    """SQL quota ledger over quota_accounts / quota_transactions.

    Each task has at most one transaction, moving
    reserved -> confirmed (success) or reserved -> cancelled (refund).
    """

    def __init__(self, db: ConduitDB) -> None:
        self._db = db

    def open_account(self, user_id: str, balance: int) -> None:
        with self._db.connection() as conn:
            conn.execute(quota_accounts_table.insert().values(user_id=user_id, balance=balance, updated_at=now()))

    def balance(self, user_id: str) -> int:
        query = select(quota_accounts_table.c.balance).where(quota_accounts_table.c.user_id == user_id)
        with self._db.connection() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            raise QuotaError(f"No quota account for user {user_id}")
        return int(row.balance)

    def phase(self, task_id: str) -> QuotaPhase | None:
        query = select(quota_transactions_table.c.phase).where(quota_transactions_table.c.task_id == task_id)
        with self._db.connection() as conn:
            row = conn.execute(query).fetchone()
        return QuotaPhase(row.phase) if row is not None else None

    def reserve(self, user_id: str, task_id: str, amount: int = 1) -> None:
        """Debit the account and record a RESERVED transaction.

        Raises:
            QuotaError: If the account is missing or its balance is too low
        """
        timestamp = now()
        with self._db.connection() as conn:
            debited = conn.execute(
                quota_accounts_table.update()
                .where(quota_accounts_table.c.user_id == user_id)
                .where(quota_accounts_table.c.balance >= amount)
                .values(balance=quota_accounts_table.c.balance - amount, updated_at=timestamp)
            )
            if debited.rowcount == 0:
                raise QuotaError(f"Insufficient quota for user {user_id} (requested {amount})")
            conn.execute(
                quota_transactions_table.insert().values(
                    transaction_id=generate_id(),
                    user_id=user_id,
                    task_id=task_id,
                    amount=amount,
                    phase=QuotaPhase.RESERVED.value,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
            )
        logger.info("quota_reserved", user_id=user_id, task_id=task_id, amount=amount)

    def confirm(self, task_id: str) -> None:
        with self._db.connection() as conn:
            result = conn.execute(
                quota_transactions_table.update()
                .where(quota_transactions_table.c.task_id == task_id)
                .where(quota_transactions_table.c.phase == QuotaPhase.RESERVED.value)
                .values(phase=QuotaPhase.CONFIRMED.value, updated_at=now())
            )
            confirmed = result.rowcount == 1
        if not confirmed:
            logger.warning("quota_confirm_skipped", task_id=task_id, reason="no reserved transaction")

    def refund(self, user_id: str, amount: int, reason: str, *, task_id: str) -> None:
        """Cancel the task's reservation and credit its amount back.

        A task with no RESERVED transaction (never reserved, or already
        refunded) is skipped, so repeated refunds never double-credit.
        """
        timestamp = now()
        with self._db.connection() as conn:
            row = conn.execute(
                select(quota_transactions_table.c.amount, quota_transactions_table.c.user_id)
                .where(quota_transactions_table.c.task_id == task_id)
                .where(quota_transactions_table.c.phase == QuotaPhase.RESERVED.value)
            ).fetchone()
            if row is None:
                logger.warning("quota_refund_skipped", task_id=task_id, reason="no reserved transaction")
                return
            if row.user_id != user_id or row.amount != amount:
                raise QuotaError(
                    f"Refund for task {task_id} does not match its reservation "
                    f"(user {row.user_id}, amount {row.amount})"
                )
            cancelled = conn.execute(
                quota_transactions_table.update()
                .where(quota_transactions_table.c.task_id == task_id)
                .where(quota_transactions_table.c.phase == QuotaPhase.RESERVED.value)
                .values(phase=QuotaPhase.CANCELLED.value, reason=reason, updated_at=timestamp)
            )
            if cancelled.rowcount == 1:
                conn.execute(
                    quota_accounts_table.update()
                    .where(quota_accounts_table.c.user_id == user_id)
                    .values(balance=quota_accounts_table.c.balance + amount, updated_at=timestamp)
                )
