"""Result types returned across the provider and engine boundaries.

ProviderResult is the single shape the invocation shim hands back to the
scheduler, whether the provider was synchronous or a polled vendor job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from conduit.contracts.enums import ErrorKind, TaskStatus, VendorJobState
from conduit.contracts.errors import StepError, make_step_error


@dataclass(frozen=True)
class ProviderFailure:
    """Typed failure carried by an unsuccessful ProviderResult."""

    kind: ErrorKind
    message: str
    vendor_job_id: str | None = None
    reasons: tuple[str, ...] = ()

    def to_step_error(self, attempts: int | None = None) -> StepError:
        return make_step_error(
            self.kind,
            self.message,
            vendor_job_id=self.vendor_job_id,
            attempts=attempts,
            reasons=list(self.reasons) or None,
        )


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of one provider invocation.

    Use the factory methods instead of the constructor:
        ProviderResult.ok({"image": "..."})
        ProviderResult.failure(ErrorKind.TIMEOUT, "vendor job still running")
    """

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: ProviderFailure | None = None
    attempts: int = 1

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> ProviderResult:
        return cls(success=True, data=dict(data or {}))

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        vendor_job_id: str | None = None,
        reasons: tuple[str, ...] = (),
    ) -> ProviderResult:
        return cls(
            success=False,
            error=ProviderFailure(kind=kind, message=message, vendor_job_id=vendor_job_id, reasons=reasons),
        )

    @property
    def cancelled(self) -> bool:
        return self.error is not None and self.error.kind == ErrorKind.CANCELLED

    @property
    def retryable(self) -> bool:
        """Only plain provider errors are worth another attempt."""
        return self.error is not None and self.error.kind == ErrorKind.PROVIDER_ERROR


@dataclass(frozen=True)
class VendorJobStatus:
    """Status snapshot returned by a vendor-async provider's poll()."""

    state: VendorJobState
    message: str | None = None
    progress: float | None = None


@dataclass(frozen=True)
class AuditVerdict:
    """Content-audit gate decision for a batch of result URLs."""

    passed: bool
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskOutcome:
    """Final, caller-visible result of executing a task.

    Attributes:
        task_id: Task that was executed
        status: Terminal status (SUCCESS or FAILED)
        artifacts: Merged outputs of the final context (empty on failure)
        result_urls: Result URLs extracted from the artifacts
        error: Structured error when the task failed
        failed_node_id: Node whose failure ended the task, if any
        compensation_error: QuotaError message if the refund itself failed
    """

    task_id: str
    status: TaskStatus
    artifacts: dict[str, Any] = field(default_factory=dict)
    result_urls: list[str] = field(default_factory=list)
    error: StepError | None = None
    failed_node_id: str | None = None
    compensation_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCESS
