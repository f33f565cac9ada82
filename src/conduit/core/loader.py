# src/conduit/core/loader.py
"""PipelineLoader: feature id -> validated PipelineDefinition.

The loader resolves a feature's schema reference, fetches the schema body,
and hands it to the DAG builder. Every load-time error is raised here,
before the engine runs a single provider.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any, Protocol

from conduit.contracts.errors import InvalidGraphError, SchemaNotFoundError
from conduit.core.canonical import is_canonicalizable, stable_hash
from conduit.core.dag.builder import ProviderLookup, build_definition, decode_body
from conduit.core.dag.graph import PipelineDefinition
from conduit.core.logging import get_logger

logger = get_logger(__name__)


class SchemaRepository(Protocol):
    """Read access to the feature catalog and stored pipeline schemas."""

    def get_schema_ref(self, feature_id: str) -> str | None:
        """Return the schema reference of a feature, or None if unknown."""
        ...

    def get_schema_body(self, schema_ref: str) -> Any:
        """Return the stored body (JSON text or decoded value), or None."""
        ...


class InMemorySchemaRepository:
    """Dict-backed SchemaRepository for tests and embedding."""

    def __init__(
        self,
        features: Mapping[str, str] | None = None,
        schemas: Mapping[str, Any] | None = None,
    ) -> None:
        self._features: dict[str, str] = dict(features or {})
        self._schemas: dict[str, Any] = dict(schemas or {})

    def add(self, feature_id: str, schema_ref: str, body: Any) -> None:
        self._features[feature_id] = schema_ref
        self._schemas[schema_ref] = body

    def get_schema_ref(self, feature_id: str) -> str | None:
        return self._features.get(feature_id)

    def get_schema_body(self, schema_ref: str) -> Any:
        return self._schemas.get(schema_ref)


def validate_schema(body: Any, providers: ProviderLookup | None = None, schema_ref: str = "<inline>") -> PipelineDefinition:
    """Validate a schema body without a repository (used by the CLI).

    Raises:
        InvalidGraphError: If the body is malformed or structurally invalid
        UnsupportedProviderRefError: If providers is given and a ref is unknown
    """
    return build_definition(schema_ref, body, providers)


class PipelineLoader:
    """Loads and caches pipeline definitions.

    Definitions are cached per (schema_ref, body hash), so an edited
    schema is picked up on the next load while unchanged schemas are
    validated once. Safe to share across task threads.
    """

    def __init__(self, repository: SchemaRepository, providers: ProviderLookup | None = None) -> None:
        self._repository = repository
        self._providers = providers
        self._cache: dict[tuple[str, str], PipelineDefinition] = {}
        self._lock = threading.Lock()

    def load(self, feature_id: str) -> PipelineDefinition:
        """Return the validated definition for a feature.

        Raises:
            SchemaNotFoundError: If the feature or its schema body is unknown
            InvalidGraphError: If the schema is malformed or structurally invalid
            UnsupportedProviderRefError: If a provider node names an unregistered ref
        """
        schema_ref = self._repository.get_schema_ref(feature_id)
        if schema_ref is None:
            raise SchemaNotFoundError(f"Feature '{feature_id}' has no pipeline schema")

        body = self._repository.get_schema_body(schema_ref)
        if body is None:
            raise SchemaNotFoundError(f"Pipeline schema '{schema_ref}' (feature '{feature_id}') does not exist")

        decoded = decode_body(body, schema_ref)
        if not is_canonicalizable(decoded):
            raise InvalidGraphError(f"Schema '{schema_ref}' contains values that are not plain JSON")
        key = (schema_ref, stable_hash(decoded))

        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        definition = build_definition(schema_ref, decoded, self._providers)
        with self._lock:
            # Another thread may have built it meanwhile; keep the first
            definition = self._cache.setdefault(key, definition)
        logger.info(
            "pipeline_loaded",
            feature_id=feature_id,
            schema_ref=schema_ref,
            source_format=definition.source_format,
            nodes=len(definition.nodes),
        )
        return definition

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
