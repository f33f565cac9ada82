"""Error and reason schema contracts.

TypedDict schemas for structured error payloads in the audit trail, plus
the exception hierarchy raised across subsystem boundaries.
"""

from typing import NotRequired, TypedDict

from conduit.contracts.enums import ErrorKind


class StepError(TypedDict):
    """Schema for error payloads recorded on failed steps and tasks."""

    kind: str  # ErrorKind value
    message: str
    vendor_job_id: NotRequired[str]  # Set for vendor-async failures, diagnostic only
    attempts: NotRequired[int]
    reasons: NotRequired[list[str]]  # Content-audit rejection reasons


def make_step_error(kind: ErrorKind, message: str, **extra: object) -> StepError:
    """Build a StepError payload, dropping unset optional fields."""
    error: StepError = {"kind": kind.value, "message": message}
    for key, value in extra.items():
        if value is not None:
            error[key] = value  # type: ignore[literal-required]
    return error


# =============================================================================
# Exception hierarchy
# =============================================================================


class ConduitError(Exception):
    """Base class for all engine errors.

    Subclasses bind an ErrorKind so callers can surface a structured kind
    without inspecting exception types.
    """

    kind: ErrorKind = ErrorKind.PROVIDER_ERROR

    def to_step_error(self) -> StepError:
        return make_step_error(self.kind, str(self))


class SchemaNotFoundError(ConduitError):
    """Raised when a feature or its pipeline schema reference is unknown."""

    kind = ErrorKind.SCHEMA_NOT_FOUND


class InvalidGraphError(ConduitError):
    """Raised when a pipeline schema violates a structural invariant.

    Covers malformed bodies, cycles, orphans, and mismatched fork/join pairs.
    """

    kind = ErrorKind.INVALID_GRAPH


class UnsupportedProviderRefError(ConduitError):
    """Raised when a provider node references an unregistered provider."""

    kind = ErrorKind.UNSUPPORTED_PROVIDER_REF

    def __init__(self, provider_ref: str, node_id: str | None = None) -> None:
        self.provider_ref = provider_ref
        self.node_id = node_id
        where = f" (node '{node_id}')" if node_id else ""
        super().__init__(f"Unsupported provider reference '{provider_ref}'{where}")


class QuotaError(ConduitError):
    """Raised when quota compensation itself fails.

    Surfaced on the task outcome; never changes the task's terminal status.
    """

    kind = ErrorKind.QUOTA_ERROR


class TaskNotFoundError(ConduitError):
    """Raised when the engine is asked to run a task that does not exist."""


class TaskStateError(ConduitError):
    """Raised on an illegal task transition (e.g., re-entering a terminal task)."""


class StepStateError(ConduitError):
    """Raised when a step row is transitioned out of a terminal status."""


class DuplicateProviderError(ConduitError):
    """Raised when two registered providers claim the same reference."""
