"""Task/step store: SQLAlchemy Core tables, connection management, recorders."""

from conduit.core.persistence.database import ConduitDB
from conduit.core.persistence.schema import (
    feature_definitions_table,
    metadata,
    pipeline_schemas_table,
    quota_accounts_table,
    quota_transactions_table,
    task_steps_table,
    tasks_table,
)
from conduit.core.persistence.schemas import SqlSchemaRepository
from conduit.core.persistence.steps import StepRecorder
from conduit.core.persistence.tasks import TaskStore

__all__ = [
    "ConduitDB",
    "SqlSchemaRepository",
    "StepRecorder",
    "TaskStore",
    "feature_definitions_table",
    "metadata",
    "pipeline_schemas_table",
    "quota_accounts_table",
    "quota_transactions_table",
    "task_steps_table",
    "tasks_table",
]
