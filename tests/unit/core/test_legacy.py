# tests/unit/core/test_legacy.py
"""Tests for the legacy step-array adapter."""

import json

import pytest

from conduit.contracts.errors import InvalidGraphError
from conduit.core.dag import ProviderNode, adapt, build_definition


class TestAdapt:
    def test_chain_shape(self) -> None:
        body = adapt([{"provider_ref": "a"}, {"provider_ref": "b"}], "legacy-1")

        assert [n["id"] for n in body["nodes"]] == ["start", "step_0", "step_1", "end"]
        assert body["edges"] == [
            {"source": "start", "target": "step_0"},
            {"source": "step_0", "target": "step_1"},
            {"source": "step_1", "target": "end"},
        ]

    def test_empty_array_rejected(self) -> None:
        with pytest.raises(InvalidGraphError, match="has no steps"):
            adapt([], "legacy-1")

    @pytest.mark.parametrize("step", ["resize", {"type": "SYNC"}, {"provider_ref": ""}])
    def test_malformed_step_rejected(self, step: object) -> None:
        with pytest.raises(InvalidGraphError, match="Legacy step 1"):
            adapt([{"provider_ref": "ok"}, step], "legacy-1")

    def test_timeout_milliseconds_bound_execution_and_polling(self) -> None:
        body = adapt([{"provider_ref": "a", "timeout": 45000}], "legacy-1")

        data = body["nodes"][1]["data"]
        assert data["poll"] == {"timeout_seconds": 45.0}
        assert data["timeout_seconds"] == 45.0

    def test_missing_timeout_gets_default_execution_bound(self) -> None:
        body = adapt([{"provider_ref": "a"}], "legacy-1")

        data = body["nodes"][1]["data"]
        assert data["timeout_seconds"] == 30.0
        assert "poll" not in data

    @pytest.mark.parametrize("timeout", [0, -5, "30000", True])
    def test_invalid_timeout_rejected(self, timeout: object) -> None:
        with pytest.raises(InvalidGraphError, match="Legacy step 0 timeout"):
            adapt([{"provider_ref": "a", "timeout": timeout}], "legacy-1")

    def test_type_kept_as_step_type_option(self) -> None:
        body = adapt([{"provider_ref": "a", "type": "VENDOR_JOB", "options": {"w": 1}}], "legacy-1")

        assert body["nodes"][1]["data"]["options"] == {"w": 1, "step_type": "VENDOR_JOB"}

    def test_explicit_step_type_option_wins(self) -> None:
        body = adapt([{"provider_ref": "a", "type": "VENDOR_JOB", "options": {"step_type": "custom"}}], "legacy-1")

        assert body["nodes"][1]["data"]["options"]["step_type"] == "custom"


class TestLegacyDefinitions:
    def test_detected_by_shape(self) -> None:
        definition = build_definition("legacy-1", [{"provider_ref": "a"}, {"provider_ref": "b"}])

        assert definition.source_format == "legacy"
        assert definition.start_node_id == "start"
        assert definition.end_node_id == "end"
        assert [n.provider_ref for n in definition.provider_nodes()] == ["a", "b"]

    def test_json_text(self) -> None:
        definition = build_definition("legacy-1", json.dumps([{"provider_ref": "a"}]))

        assert definition.source_format == "legacy"

    def test_camel_case_retry_policy(self) -> None:
        definition = build_definition(
            "legacy-1",
            [{"provider_ref": "a", "retry_policy": {"maxAttempts": 4, "delayMs": 250, "exponential": False}}],
        )

        step = definition.node("step_0")
        assert isinstance(step, ProviderNode)
        assert step.retry_policy is not None
        assert step.retry_policy.max_attempts == 4
        assert step.retry_policy.delay_seconds == 0.25
        assert step.retry_policy.exponential is False

    def test_timeout_reaches_poll_spec(self) -> None:
        definition = build_definition("legacy-1", [{"provider_ref": "a", "timeout": 1500}])

        step = definition.node("step_0")
        assert isinstance(step, ProviderNode)
        assert step.poll is not None
        assert step.poll.timeout_seconds == 1.5
        assert step.timeout_seconds == 1.5

    def test_same_steps_hash_the_same_as_text_or_array(self) -> None:
        steps = [{"provider_ref": "a", "type": "SYNC"}]

        assert build_definition("x", steps).schema_hash == build_definition("y", json.dumps(steps)).schema_hash
