# src/conduit/core/__init__.py
"""Core infrastructure: Canonical JSON, Configuration, DAG, Loader, Logging, Persistence, Quota."""

from conduit.core.canonical import canonical_json, stable_hash
from conduit.core.config import (
    ConduitSettings,
    DatabaseSettings,
    JoinSettings,
    LoggingSettings,
    PollingSettings,
    ProviderInstanceSettings,
    RetrySettings,
    load_settings,
)
from conduit.core.content_audit import AllowAllAuditor, ContentAuditor
from conduit.core.loader import InMemorySchemaRepository, PipelineLoader, SchemaRepository, validate_schema
from conduit.core.logging import configure_logging, get_logger
from conduit.core.quota import LedgerQuotaService, QuotaCompensator, QuotaService

__all__ = [
    "AllowAllAuditor",
    "ConduitSettings",
    "ContentAuditor",
    "DatabaseSettings",
    "InMemorySchemaRepository",
    "JoinSettings",
    "LedgerQuotaService",
    "LoggingSettings",
    "PipelineLoader",
    "PollingSettings",
    "ProviderInstanceSettings",
    "QuotaCompensator",
    "QuotaService",
    "RetrySettings",
    "SchemaRepository",
    "canonical_json",
    "configure_logging",
    "get_logger",
    "load_settings",
    "stable_hash",
    "validate_schema",
]
