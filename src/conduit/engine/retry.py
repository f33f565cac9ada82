# src/conduit/engine/retry.py
"""RetryManager: per-node retry of provider errors, with tenacity.

Providers report failures as ProviderResult values rather than exceptions,
so retries are driven by the result: only a `provider_error` failure is
retried. Timeouts, audit rejections and cancellations are final.

Delays follow the node's policy: a fixed delay, or delay * 2**(n-1)
before the n-th retry when exponential. The wait between attempts is the
branch's cancel token, so a cancelled branch stops retrying at once.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from conduit.contracts.results import ProviderResult

if TYPE_CHECKING:
    from conduit.core.config import RetrySettings
    from conduit.core.dag.models import RetryPolicySpec
    from conduit.engine.cancellation import CancelToken


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 1
    delay_seconds: float = 2.0
    exponential: bool = False
    max_delay_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryConfig:
        return cls(
            max_attempts=settings.max_attempts,
            delay_seconds=settings.delay_seconds,
            exponential=settings.exponential,
            max_delay_seconds=settings.max_delay_seconds,
        )

    def with_overrides(self, policy: RetryPolicySpec | None) -> RetryConfig:
        """Layer a node's retry policy over these defaults."""
        if policy is None:
            return self
        return RetryConfig(
            max_attempts=policy.max_attempts if policy.max_attempts is not None else self.max_attempts,
            delay_seconds=policy.delay_seconds if policy.delay_seconds is not None else self.delay_seconds,
            exponential=policy.exponential if policy.exponential is not None else self.exponential,
            max_delay_seconds=self.max_delay_seconds,
        )


class _stop_when_cancelled(stop_base):
    def __init__(self, cancel: CancelToken | None) -> None:
        self._cancel = cancel

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self._cancel is not None and self._cancel.is_cancelled


class RetryManager:
    """Runs one provider call under a retry policy.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3, delay_seconds=0.5))
        result = manager.run(lambda attempt: invoke_once(attempt), cancel=token)
        result.attempts  # how many tries it took
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _wait(self) -> wait_base:
        if self._config.exponential:
            return wait_exponential(
                multiplier=self._config.delay_seconds,
                exp_base=2,
                max=self._config.max_delay_seconds,
            )
        return wait_fixed(min(self._config.delay_seconds, self._config.max_delay_seconds))

    def run(
        self,
        attempt: Callable[[int], ProviderResult],
        *,
        cancel: CancelToken | None = None,
        on_retry: Callable[[int, ProviderResult], None] | None = None,
    ) -> ProviderResult:
        """Call attempt(n) until it succeeds, fails finally, or attempts run out.

        Returns:
            The last ProviderResult, with `attempts` set to the number of tries
        """
        attempts = 0

        def sleep(seconds: float) -> None:
            if cancel is not None:
                cancel.wait(seconds)
            elif seconds > 0:
                time.sleep(seconds)

        def before_sleep(retry_state: RetryCallState) -> None:
            if on_retry is not None and retry_state.outcome is not None:
                on_retry(retry_state.attempt_number, retry_state.outcome.result())

        def last_result(retry_state: RetryCallState) -> ProviderResult:
            assert retry_state.outcome is not None
            result: ProviderResult = retry_state.outcome.result()
            return result

        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_attempts) | _stop_when_cancelled(cancel),
            wait=self._wait(),
            retry=retry_if_result(lambda result: result.retryable),
            sleep=sleep,
            before_sleep=before_sleep,
            retry_error_callback=last_result,
        )

        def counted() -> ProviderResult:
            nonlocal attempts
            attempts += 1
            return attempt(attempts)

        result: ProviderResult = retrying(counted)
        return replace(result, attempts=attempts)
