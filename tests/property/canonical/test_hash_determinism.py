# tests/property/canonical/test_hash_determinism.py
"""Property tests for canonical JSON determinism.

The loader keys its definition cache on stable_hash() of the decoded
schema body, so the same body must always hash the same regardless of
key order or container type.
"""

from __future__ import annotations

import json
from types import MappingProxyType
from typing import Any

from hypothesis import given
from hypothesis import strategies as st

from conduit.core.canonical import canonical_json, is_canonicalizable, stable_hash
from tests.property.settings import DETERMINISM_SETTINGS, STANDARD_SETTINGS

# RFC 8785 only admits JavaScript-safe integers
_MAX_SAFE_INT = 2**53 - 1

json_primitives = (
    st.none()
    | st.booleans()
    | st.integers(min_value=-_MAX_SAFE_INT, max_value=_MAX_SAFE_INT)
    | st.floats(allow_nan=False, allow_infinity=False)
    | st.text(max_size=50)
)

json_values = st.recursive(
    json_primitives,
    lambda children: st.lists(children, max_size=8) | st.dictionaries(st.text(max_size=20), children, max_size=8),
    max_leaves=40,
)

schema_like = st.dictionaries(st.text(min_size=1, max_size=20), json_values, min_size=1, max_size=10)


class TestDeterminism:
    @given(data=json_values)
    @DETERMINISM_SETTINGS
    def test_hash_is_deterministic(self, data: Any) -> None:
        assert stable_hash(data) == stable_hash(data)

    @given(data=schema_like)
    @DETERMINISM_SETTINGS
    def test_key_order_does_not_matter(self, data: dict[str, Any]) -> None:
        reordered = dict(reversed(list(data.items())))

        assert canonical_json(reordered) == canonical_json(data)
        assert stable_hash(reordered) == stable_hash(data)

    @given(data=schema_like)
    @STANDARD_SETTINGS
    def test_read_only_views_hash_like_their_source(self, data: dict[str, Any]) -> None:
        assert stable_hash(MappingProxyType(data)) == stable_hash(data)

    @given(items=st.lists(json_primitives, max_size=10))
    @STANDARD_SETTINGS
    def test_tuples_hash_like_lists(self, items: list[Any]) -> None:
        assert stable_hash(tuple(items)) == stable_hash(items)


class TestShape:
    @given(data=json_values)
    @STANDARD_SETTINGS
    def test_output_parses_as_json(self, data: Any) -> None:
        text = canonical_json(data)

        json.loads(text)
        assert is_canonicalizable(data)

    @given(data=json_values)
    @STANDARD_SETTINGS
    def test_hash_is_sha256_hex(self, data: Any) -> None:
        digest = stable_hash(data)

        assert len(digest) == 64
        assert set(digest) <= set("0123456789abcdef")
