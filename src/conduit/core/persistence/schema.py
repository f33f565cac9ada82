# src/conduit/core/persistence/schema.py
"""SQLAlchemy table definitions for the task/step store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

# === Feature catalog ===

feature_definitions_table = Table(
    "feature_definitions",
    metadata,
    Column("feature_id", String(128), primary_key=True),
    Column("pipeline_schema_ref", String(128)),  # NULL = feature not wired to a pipeline
    Column("created_at", DateTime(timezone=True), nullable=False),
)

pipeline_schemas_table = Table(
    "pipeline_schemas",
    metadata,
    Column("pipeline_id", String(128), primary_key=True),
    Column("body_json", Text, nullable=False),  # Legacy step array or {nodes, edges}
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

# === Tasks ===

tasks_table = Table(
    "tasks",
    metadata,
    Column("task_id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=False),
    Column("feature_id", String(128), nullable=False),
    Column("status", String(16), nullable=False),
    Column("quota_amount", Integer, nullable=False, default=1),
    Column("schema_ref", String(128)),
    Column("input_json", Text),
    Column("artifacts_json", Text),
    Column("result_urls_json", Text),
    Column("error_kind", String(32)),
    Column("error_message", Text),
    Column("failed_node_id", String(128)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("started_at", DateTime(timezone=True)),
    Column("completed_at", DateTime(timezone=True)),
    CheckConstraint("quota_amount >= 0", name="ck_tasks_quota_amount"),
)

Index("ix_tasks_user_status", tasks_table.c.user_id, tasks_table.c.status)

# === Task steps (append-only audit trail) ===

task_steps_table = Table(
    "task_steps",
    metadata,
    Column("step_id", String(64), primary_key=True),
    Column("task_id", String(64), ForeignKey("tasks.task_id"), nullable=False),
    Column("node_id", String(128), nullable=False),
    Column("branch_id", String(256), nullable=False),
    Column("provider_ref", String(128), nullable=False),
    Column("status", String(16), nullable=False),
    # Tie-breaker for steps started within the same clock tick
    Column("seq", Integer, nullable=False),
    Column("output_json", Text),
    Column("error_json", Text),
    Column("error_kind", String(32)),
    Column("error_message", Text),
    Column("attempts", Integer, nullable=False, default=0),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("finished_at", DateTime(timezone=True)),
)

Index("ix_task_steps_task_started", task_steps_table.c.task_id, task_steps_table.c.started_at, task_steps_table.c.seq)

# === Quota ledger ===

quota_accounts_table = Table(
    "quota_accounts",
    metadata,
    Column("user_id", String(64), primary_key=True),
    Column("balance", Integer, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

quota_transactions_table = Table(
    "quota_transactions",
    metadata,
    Column("transaction_id", String(64), primary_key=True),
    Column("user_id", String(64), ForeignKey("quota_accounts.user_id"), nullable=False),
    Column("task_id", String(64), nullable=False),
    Column("amount", Integer, nullable=False),
    Column("phase", String(16), nullable=False),  # reserved, confirmed, cancelled
    Column("reason", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    # One reservation per task makes refund idempotent at the row level
    UniqueConstraint("task_id", name="uq_quota_transactions_task"),
)
