# tests/unit/engine/test_retry.py
"""Tests for RetryManager and RetryConfig."""

from collections.abc import Sequence

import pytest

from conduit.contracts.enums import CancelReason, ErrorKind
from conduit.contracts.results import ProviderResult
from conduit.core.config import RetrySettings
from conduit.core.dag.models import RetryPolicySpec
from conduit.engine.cancellation import CancelToken
from conduit.engine.retry import RetryConfig, RetryManager


def _script(results: Sequence[ProviderResult]) -> tuple[list[int], object]:
    calls: list[int] = []

    def attempt(n: int) -> ProviderResult:
        calls.append(n)
        return results[min(n, len(results)) - 1]

    return calls, attempt


FLAKY = ProviderResult.failure(ErrorKind.PROVIDER_ERROR, "flaky")
OK = ProviderResult.ok({"image": "x"})


class TestRetryConfig:
    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryConfig(max_attempts=0)

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValueError, match="delay_seconds"):
            RetryConfig(delay_seconds=-1)

    def test_from_settings(self) -> None:
        config = RetryConfig.from_settings(RetrySettings(max_attempts=4, delay_seconds=0.1, exponential=True))

        assert config == RetryConfig(max_attempts=4, delay_seconds=0.1, exponential=True, max_delay_seconds=60.0)

    def test_node_policy_overrides_only_set_fields(self) -> None:
        base = RetryConfig(max_attempts=2, delay_seconds=1.0, exponential=False)

        merged = base.with_overrides(RetryPolicySpec(max_attempts=5))

        assert merged.max_attempts == 5
        assert merged.delay_seconds == 1.0
        assert merged.exponential is False

    def test_no_policy_keeps_defaults(self) -> None:
        base = RetryConfig(max_attempts=2)

        assert base.with_overrides(None) is base


class TestRetryManager:
    def test_success_first_try(self) -> None:
        calls, attempt = _script([OK])

        result = RetryManager(RetryConfig(max_attempts=3, delay_seconds=0)).run(attempt)  # type: ignore[arg-type]

        assert result.success
        assert result.attempts == 1
        assert calls == [1]

    def test_provider_error_retried_until_success(self) -> None:
        calls, attempt = _script([FLAKY, FLAKY, OK])
        retries: list[int] = []

        result = RetryManager(RetryConfig(max_attempts=3, delay_seconds=0)).run(
            attempt,  # type: ignore[arg-type]
            on_retry=lambda n, r: retries.append(n),
        )

        assert result.success
        assert result.attempts == 3
        assert retries == [1, 2]

    def test_attempts_exhausted_returns_last_failure(self) -> None:
        calls, attempt = _script([FLAKY])

        result = RetryManager(RetryConfig(max_attempts=3, delay_seconds=0)).run(attempt)  # type: ignore[arg-type]

        assert not result.success
        assert result.error is not None and result.error.kind == ErrorKind.PROVIDER_ERROR
        assert result.attempts == 3
        assert calls == [1, 2, 3]

    @pytest.mark.parametrize("kind", [ErrorKind.TIMEOUT, ErrorKind.AUDIT_REJECTED, ErrorKind.CANCELLED])
    def test_final_failures_not_retried(self, kind: ErrorKind) -> None:
        calls, attempt = _script([ProviderResult.failure(kind, "final"), OK])

        result = RetryManager(RetryConfig(max_attempts=3, delay_seconds=0)).run(attempt)  # type: ignore[arg-type]

        assert result.error is not None and result.error.kind == kind
        assert calls == [1]

    def test_cancelled_token_stops_retrying(self) -> None:
        token = CancelToken()
        calls: list[int] = []

        def attempt(n: int) -> ProviderResult:
            calls.append(n)
            token.cancel(CancelReason.SUPERSEDED)
            return FLAKY

        result = RetryManager(RetryConfig(max_attempts=5, delay_seconds=30)).run(attempt, cancel=token)

        assert calls == [1]
        assert result.attempts == 1
        assert not result.success

    def test_no_retry_factory(self) -> None:
        calls, attempt = _script([FLAKY, OK])

        result = RetryManager(RetryConfig.no_retry()).run(attempt)  # type: ignore[arg-type]

        assert result.attempts == 1
        assert calls == [1]
