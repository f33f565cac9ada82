# tests/unit/core/test_loader.py
"""Tests for PipelineLoader and the schema repositories."""

import json

import pytest

from conduit.contracts.errors import InvalidGraphError, SchemaNotFoundError, UnsupportedProviderRefError
from conduit.core.loader import InMemorySchemaRepository, PipelineLoader, validate_schema
from conduit.core.persistence import ConduitDB, SqlSchemaRepository
from tests.fixtures.graphs import fork_join, linear


class _Refs:
    def __init__(self, *refs: str) -> None:
        self._refs = set(refs)

    def has(self, provider_ref: str) -> bool:
        return provider_ref in self._refs


class TestPipelineLoader:
    def test_unknown_feature(self) -> None:
        loader = PipelineLoader(InMemorySchemaRepository())

        with pytest.raises(SchemaNotFoundError, match="Feature 'missing' has no pipeline schema"):
            loader.load("missing")

    def test_feature_pointing_at_missing_schema(self) -> None:
        loader = PipelineLoader(InMemorySchemaRepository(features={"f1": "ghost"}))

        with pytest.raises(SchemaNotFoundError, match="Pipeline schema 'ghost'"):
            loader.load("f1")

    def test_invalid_json_body(self) -> None:
        repository = InMemorySchemaRepository()
        repository.add("f1", "s1", "{not json")

        with pytest.raises(InvalidGraphError, match="not valid JSON"):
            PipelineLoader(repository).load("f1")

    def test_non_json_values_rejected(self) -> None:
        repository = InMemorySchemaRepository()
        body = linear("a")
        body["nodes"][1]["data"]["options"] = {"when": object()}
        repository.add("f1", "s1", body)

        with pytest.raises(InvalidGraphError, match="not plain JSON"):
            PipelineLoader(repository).load("f1")

    def test_unsupported_provider_ref(self) -> None:
        repository = InMemorySchemaRepository()
        repository.add("f1", "s1", linear("known", "mystery"))

        with pytest.raises(UnsupportedProviderRefError) as exc_info:
            PipelineLoader(repository, _Refs("known")).load("f1")

        assert exc_info.value.provider_ref == "mystery"

    def test_definition_is_cached(self) -> None:
        repository = InMemorySchemaRepository()
        repository.add("f1", "s1", linear("a"))
        loader = PipelineLoader(repository)

        assert loader.load("f1") is loader.load("f1")

    def test_features_sharing_a_schema_share_the_definition(self) -> None:
        repository = InMemorySchemaRepository(features={"f1": "s1", "f2": "s1"}, schemas={"s1": linear("a")})
        loader = PipelineLoader(repository)

        assert loader.load("f1") is loader.load("f2")

    def test_edited_schema_is_reloaded(self) -> None:
        repository = InMemorySchemaRepository()
        repository.add("f1", "s1", linear("a"))
        loader = PipelineLoader(repository)
        first = loader.load("f1")

        repository.add("f1", "s1", fork_join("ANY", ["a", "b"]))
        second = loader.load("f1")

        assert second is not first
        assert second.fork_joins == {"fork": "join"}

    def test_text_and_decoded_bodies_share_cache_entry(self) -> None:
        repository = InMemorySchemaRepository()
        repository.add("f1", "s1", linear("a"))
        loader = PipelineLoader(repository)
        first = loader.load("f1")

        repository.add("f1", "s1", json.dumps(linear("a")))

        assert loader.load("f1") is first

    def test_clear_cache(self) -> None:
        repository = InMemorySchemaRepository()
        repository.add("f1", "s1", linear("a"))
        loader = PipelineLoader(repository)
        first = loader.load("f1")

        loader.clear_cache()

        assert loader.load("f1") is not first

    def test_legacy_schema(self) -> None:
        repository = InMemorySchemaRepository()
        repository.add("f1", "s1", [{"provider_ref": "a"}])

        assert PipelineLoader(repository).load("f1").source_format == "legacy"


class TestValidateSchema:
    def test_without_providers_skips_ref_check(self) -> None:
        definition = validate_schema(linear("anything"))

        assert definition.schema_ref == "<inline>"

    def test_with_providers(self) -> None:
        with pytest.raises(UnsupportedProviderRefError):
            validate_schema(linear("anything"), _Refs())


class TestSqlSchemaRepository:
    def test_round_trip_through_loader(self, db: ConduitDB) -> None:
        repository = SqlSchemaRepository(db)
        repository.save_schema("s1", linear("a", "b"))
        repository.save_feature("f1", "s1")

        definition = PipelineLoader(repository).load("f1")

        assert [n.provider_ref for n in definition.provider_nodes()] == ["a", "b"]

    def test_unknown_lookups_return_none(self, db: ConduitDB) -> None:
        repository = SqlSchemaRepository(db)

        assert repository.get_schema_ref("nope") is None
        assert repository.get_schema_body("nope") is None

    def test_feature_without_schema(self, db: ConduitDB) -> None:
        repository = SqlSchemaRepository(db)
        repository.save_feature("f1", None)

        with pytest.raises(SchemaNotFoundError):
            PipelineLoader(repository).load("f1")

    def test_save_schema_replaces_body(self, db: ConduitDB) -> None:
        repository = SqlSchemaRepository(db)
        repository.save_schema("s1", linear("a"))
        repository.save_schema("s1", '[{"provider_ref": "b"}]')

        assert json.loads(repository.get_schema_body("s1")) == [{"provider_ref": "b"}]

    def test_save_feature_repoints(self, db: ConduitDB) -> None:
        repository = SqlSchemaRepository(db)
        repository.save_feature("f1", "s1")
        repository.save_feature("f1", "s2")

        assert repository.get_schema_ref("f1") == "s2"
