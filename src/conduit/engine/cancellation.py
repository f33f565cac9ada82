# src/conduit/engine/cancellation.py
"""Cooperative cancellation for branch walkers and vendor polling.

Threads cannot be interrupted from outside, so cancellation is a flag that
running code checks at its suspension points. Tokens form a tree: the task
owns the root token, every fork creates one child per branch, and cancelling
a token cancels its whole subtree.
"""

from __future__ import annotations

import threading

from conduit.contracts.enums import CancelReason


class CancelToken:
    """A cancellation flag with a reason, propagated to child tokens.

    The first cancel() wins: later calls keep the original reason, so a
    branch cancelled as a FIRST-join loser stays SUPERSEDED even if the
    task is cancelled afterwards.

    Example:
        root = CancelToken()
        branch = root.child()
        root.cancel(CancelReason.TASK_CANCELLED)
        assert branch.reason == CancelReason.TASK_CANCELLED
    """

    def __init__(self, parent: CancelToken | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: CancelReason | None = None
        self._children: list[CancelToken] = []
        if parent is not None:
            parent._adopt(self)

    def child(self) -> CancelToken:
        """Create a token cancelled whenever this one is."""
        return CancelToken(parent=self)

    def _adopt(self, child: CancelToken) -> None:
        with self._lock:
            self._children.append(child)
            reason = self._reason
        if reason is not None:
            child.cancel(reason)

    def cancel(self, reason: CancelReason) -> bool:
        """Trip the token and its subtree.

        Returns:
            True if this call tripped the token, False if it was already cancelled
        """
        with self._lock:
            if self._reason is not None:
                return False
            self._reason = reason
            children = list(self._children)
        self._event.set()
        for child in children:
            child.cancel(reason)
        return True

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> CancelReason | None:
        return self._reason

    def wait(self, timeout: float | None) -> bool:
        """Sleep up to timeout seconds, waking early on cancellation.

        Returns:
            True if the token is cancelled
        """
        return self._event.wait(timeout)
