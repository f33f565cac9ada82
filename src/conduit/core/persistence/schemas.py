# src/conduit/core/persistence/schemas.py
"""SQL-backed feature catalog and pipeline schema storage."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from conduit.core.canonical import canonical_json
from conduit.core.persistence._helpers import now
from conduit.core.persistence.database import ConduitDB
from conduit.core.persistence.schema import feature_definitions_table, pipeline_schemas_table


class SqlSchemaRepository:
    """Schema lookups over the feature_definitions / pipeline_schemas tables.

    Bodies are stored as JSON text and returned undecoded; the loader
    decodes and validates them.
    """

    def __init__(self, db: ConduitDB) -> None:
        self._db = db

    def get_schema_ref(self, feature_id: str) -> str | None:
        query = select(feature_definitions_table.c.pipeline_schema_ref).where(
            feature_definitions_table.c.feature_id == feature_id
        )
        with self._db.connection() as conn:
            row = conn.execute(query).fetchone()
        return row.pipeline_schema_ref if row is not None else None

    def get_schema_body(self, schema_ref: str) -> str | None:
        query = select(pipeline_schemas_table.c.body_json).where(pipeline_schemas_table.c.pipeline_id == schema_ref)
        with self._db.connection() as conn:
            row = conn.execute(query).fetchone()
        return row.body_json if row is not None else None

    def save_schema(self, schema_ref: str, body: Any) -> None:
        """Insert or replace a schema body (JSON text or a decoded value)."""
        body_json = body if isinstance(body, str) else canonical_json(body)
        timestamp = now()
        with self._db.connection() as conn:
            updated = conn.execute(
                pipeline_schemas_table.update()
                .where(pipeline_schemas_table.c.pipeline_id == schema_ref)
                .values(body_json=body_json, updated_at=timestamp)
            )
            if updated.rowcount == 0:
                conn.execute(
                    pipeline_schemas_table.insert().values(
                        pipeline_id=schema_ref,
                        body_json=body_json,
                        created_at=timestamp,
                        updated_at=timestamp,
                    )
                )

    def save_feature(self, feature_id: str, schema_ref: str | None) -> None:
        """Insert or re-point a feature at a pipeline schema."""
        with self._db.connection() as conn:
            updated = conn.execute(
                feature_definitions_table.update()
                .where(feature_definitions_table.c.feature_id == feature_id)
                .values(pipeline_schema_ref=schema_ref)
            )
            if updated.rowcount == 0:
                conn.execute(
                    feature_definitions_table.insert().values(
                        feature_id=feature_id,
                        pipeline_schema_ref=schema_ref,
                        created_at=now(),
                    )
                )
