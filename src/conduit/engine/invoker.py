# src/conduit/engine/invoker.py
"""ProviderInvoker: one calling convention for sync and vendor-async providers.

The scheduler hands the invoker a provider node and its branch context and
always gets back a ProviderResult. Everything provider-shaped happens here:
registry lookup, the sync execution timeout, the submit/poll loop with its
budget, the content-audit gate, retry of provider errors, and conversion of
exceptions raised by provider code into typed failures.

Vendor job ids never leave this module except as diagnostic fields on a
failure.
"""

from __future__ import annotations

import contextvars
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from conduit.contracts.context import ExecutionContext
from conduit.contracts.enums import ErrorKind, ProviderKind, VendorJobState
from conduit.contracts.errors import UnsupportedProviderRefError
from conduit.contracts.results import ProviderResult, VendorJobStatus
from conduit.contracts.types import BranchID
from conduit.core.canonical import is_canonicalizable
from conduit.core.config import PollingSettings, RetrySettings
from conduit.core.content_audit import AllowAllAuditor, ContentAuditor
from conduit.core.dag.models import PollSpec, ProviderNode
from conduit.core.logging import get_logger
from conduit.engine.cancellation import CancelToken
from conduit.engine.clock import DEFAULT_CLOCK, Clock
from conduit.engine.retry import RetryConfig, RetryManager
from conduit.plugins.context import ProviderContext
from conduit.plugins.manager import ProviderRegistry
from conduit.plugins.protocols import SyncProviderProtocol, VendorAsyncProviderProtocol

logger = get_logger(__name__)


@dataclass(frozen=True)
class PollBudget:
    """Limits of one vendor job's polling loop; whichever trips first ends it."""

    interval_seconds: float
    max_attempts: int
    timeout_seconds: float | None

    @classmethod
    def resolve(cls, defaults: PollingSettings, override: PollSpec | None) -> PollBudget:
        if override is None:
            return cls(defaults.interval_seconds, defaults.max_attempts, defaults.timeout_seconds)
        return cls(
            interval_seconds=override.interval_seconds if override.interval_seconds is not None else defaults.interval_seconds,
            max_attempts=override.max_attempts if override.max_attempts is not None else defaults.max_attempts,
            timeout_seconds=override.timeout_seconds if override.timeout_seconds is not None else defaults.timeout_seconds,
        )


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def _cancelled(cancel: CancelToken, vendor_job_id: str | None = None) -> ProviderResult:
    reason = cancel.reason.value if cancel.reason is not None else "cancelled"
    return ProviderResult.failure(ErrorKind.CANCELLED, f"Interrupted ({reason})", vendor_job_id=vendor_job_id)


class ProviderInvoker:
    """Invokes providers on behalf of branch walkers.

    Thread-safe: holds no per-call state, so every branch thread shares
    one invoker.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        auditor: ContentAuditor | None = None,
        *,
        polling: PollingSettings | None = None,
        retry: RetrySettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._registry = registry
        self._auditor = auditor or AllowAllAuditor()
        self._polling = polling or PollingSettings()
        self._retry_defaults = RetryConfig.from_settings(retry or RetrySettings())
        self._clock = clock or DEFAULT_CLOCK

    def invoke(
        self,
        node: ProviderNode,
        context: ExecutionContext,
        *,
        branch_id: BranchID,
        cancel: CancelToken,
    ) -> ProviderResult:
        """Run one provider node, with retries, and return its result.

        Never raises for provider-side problems: an unknown ref, a provider
        exception, an exhausted budget and an audit rejection all come back
        as failed results.
        """
        try:
            provider = self._registry.get(node.provider_ref)
        except UnsupportedProviderRefError as e:
            return ProviderResult.failure(ErrorKind.UNSUPPORTED_PROVIDER_REF, str(e))

        ctx = ProviderContext(
            task_id=context.task_id,
            node_id=node.node_id,
            branch_id=branch_id,
            values=context.values,
            metadata=context.metadata,
            options=node.options,
            cancel=cancel,
        )
        manager = RetryManager(self._retry_defaults.with_overrides(node.retry_policy))

        def on_retry(attempt: int, result: ProviderResult) -> None:
            logger.warning(
                "provider_retry",
                node_id=node.node_id,
                branch_id=branch_id,
                provider_ref=node.provider_ref,
                attempt=attempt,
                error=result.error.message if result.error else None,
            )

        def attempt(number: int) -> ProviderResult:
            if cancel.is_cancelled:
                return _cancelled(cancel)
            match provider.kind:
                case ProviderKind.SYNC:
                    result = self._call_sync(provider, ctx, node.timeout_seconds)  # type: ignore[arg-type]
                case ProviderKind.VENDOR_ASYNC:
                    budget = PollBudget.resolve(self._polling, node.poll)
                    result = self._call_vendor(provider, ctx, budget, cancel)  # type: ignore[arg-type]
            return result

        return manager.run(attempt, cancel=cancel, on_retry=on_retry)

    def _call_sync(self, provider: SyncProviderProtocol, ctx: ProviderContext, timeout_seconds: float | None) -> ProviderResult:
        executor: ThreadPoolExecutor | None = None
        try:
            if timeout_seconds is None:
                output = provider.execute(ctx)
            else:
                # Overrunning calls are abandoned; the worker thread finishes in the background
                executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"conduit-{ctx.node_id}")
                future = executor.submit(contextvars.copy_context().run, provider.execute, ctx)
                done, _ = wait([future], timeout=timeout_seconds)
                if not done:
                    logger.warning(
                        "provider_timeout",
                        node_id=ctx.node_id,
                        branch_id=ctx.branch_id,
                        timeout_seconds=timeout_seconds,
                    )
                    return ProviderResult.failure(ErrorKind.TIMEOUT, f"Provider did not finish within {timeout_seconds:g}s")
                output = future.result()
        except Exception as e:  # provider code boundary: any exception is a provider_error
            logger.info("provider_failed", node_id=ctx.node_id, branch_id=ctx.branch_id, error=_describe(e))
            return ProviderResult.failure(ErrorKind.PROVIDER_ERROR, _describe(e))
        finally:
            if executor is not None:
                executor.shutdown(wait=False)
        data = dict(output) if isinstance(output, Mapping) else {"result": output}
        return self._checked(data)

    def _call_vendor(
        self,
        provider: VendorAsyncProviderProtocol,
        ctx: ProviderContext,
        budget: PollBudget,
        cancel: CancelToken,
    ) -> ProviderResult:
        try:
            job_id = provider.submit(ctx)
        except Exception as e:  # provider code boundary
            return ProviderResult.failure(ErrorKind.PROVIDER_ERROR, f"Submit failed: {_describe(e)}")

        log = logger.bind(node_id=ctx.node_id, branch_id=ctx.branch_id, vendor_job_id=job_id)
        log.info("vendor_job_submitted")
        started = self._clock.monotonic()
        polls = 0

        while True:
            if cancel.wait(budget.interval_seconds):
                log.info("vendor_polling_abandoned", reason=str(cancel.reason), polls=polls)
                return _cancelled(cancel, vendor_job_id=job_id)

            polls += 1
            status: VendorJobStatus | None
            try:
                status = provider.poll(job_id, ctx)
            except Exception as e:  # provider code boundary: a failed status call still uses up one poll
                log.warning("vendor_poll_failed", polls=polls, error=_describe(e))
                status = None

            if status is not None and status.state == VendorJobState.SUCCEEDED:
                break
            if status is not None and status.state == VendorJobState.FAILED:
                log.info("vendor_job_failed", message=status.message, polls=polls)
                return ProviderResult.failure(
                    ErrorKind.PROVIDER_ERROR,
                    status.message or f"Vendor job {job_id} failed",
                    vendor_job_id=job_id,
                )

            elapsed = self._clock.monotonic() - started
            if polls >= budget.max_attempts or (budget.timeout_seconds is not None and elapsed >= budget.timeout_seconds):
                log.warning("vendor_job_timeout", polls=polls, elapsed_seconds=round(elapsed, 3))
                return ProviderResult.failure(
                    ErrorKind.TIMEOUT,
                    f"Vendor job {job_id} did not finish within {polls} polls / {elapsed:.1f}s",
                    vendor_job_id=job_id,
                )

        try:
            output = provider.fetch_result(job_id, ctx)
        except Exception as e:  # provider code boundary
            return ProviderResult.failure(ErrorKind.PROVIDER_ERROR, f"Fetching result failed: {_describe(e)}", vendor_job_id=job_id)

        data = dict(output)
        urls = data.get("result_urls", [])
        if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
            log.warning("vendor_result_malformed", result_urls_type=type(urls).__name__)
            return ProviderResult.failure(
                ErrorKind.PROVIDER_ERROR,
                f"Vendor job {job_id} returned result_urls that is not a list of strings",
                vendor_job_id=job_id,
            )
        rejection = self._audit(ctx, urls, job_id)
        if rejection is not None:
            return rejection
        log.info("vendor_job_succeeded", polls=polls)
        return self._checked(data)

    def _audit(self, ctx: ProviderContext, urls: list[str], job_id: str) -> ProviderResult | None:
        """Run the content-audit gate on a vendor result's URLs; None means passed.

        Runs for every successful vendor job, including ones with no URLs.
        """
        try:
            verdict = self._auditor.audit(ctx.task_id, list(urls))
        except Exception as e:  # auditor boundary: an unreachable auditor rejects
            logger.error("content_audit_failed", node_id=ctx.node_id, error=_describe(e))
            return ProviderResult.failure(
                ErrorKind.AUDIT_REJECTED,
                "Content audit unavailable",
                vendor_job_id=job_id,
                reasons=(_describe(e),),
            )
        if verdict.passed:
            return None
        logger.warning("content_audit_rejected", node_id=ctx.node_id, reasons=list(verdict.reasons))
        return ProviderResult.failure(
            ErrorKind.AUDIT_REJECTED,
            f"Content audit rejected {len(urls)} result URL(s)",
            vendor_job_id=job_id,
            reasons=tuple(verdict.reasons),
        )

    @staticmethod
    def _checked(data: dict[str, Any]) -> ProviderResult:
        if not is_canonicalizable(data):
            return ProviderResult.failure(ErrorKind.PROVIDER_ERROR, "Provider output is not JSON-serializable")
        return ProviderResult.ok(data)
