"""
Conduit: DAG pipeline execution engine for provider-backed tasks.

Runs a task through pluggable provider steps with fork/join concurrency,
a durable per-step audit trail, and exactly-once quota compensation.
"""

__version__ = "0.1.0"
