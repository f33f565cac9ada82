# src/conduit/core/content_audit.py
"""Content-audit gate consumed after a vendor job succeeds.

The moderation policy itself lives outside the engine; the engine only
needs a pass/fail verdict for a batch of result URLs.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from conduit.contracts.results import AuditVerdict


@runtime_checkable
class ContentAuditor(Protocol):
    def audit(self, task_id: str, candidate_urls: Sequence[str]) -> AuditVerdict: ...


class AllowAllAuditor:
    """Passes every batch. Used when no moderation service is wired in."""

    def audit(self, task_id: str, candidate_urls: Sequence[str]) -> AuditVerdict:
        return AuditVerdict(passed=True)
