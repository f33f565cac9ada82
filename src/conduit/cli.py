# src/conduit/cli.py
"""Conduit Command Line Interface.

Entry point for the conduit CLI tool: schema validation, step trail
inspection and one-shot task execution.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from conduit import __version__
from conduit.contracts.errors import ConduitError
from conduit.core.config import ConduitSettings, load_settings
from conduit.core.loader import validate_schema
from conduit.plugins.manager import ProviderRegistry

__all__ = ["app"]

app = typer.Typer(
    name="conduit",
    help="Conduit: DAG pipeline execution for provider-backed tasks.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"conduit version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file doesn't exist
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(None, "--env-file", help="Path to .env file (skips automatic search)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
) -> None:
    """Conduit: DAG pipeline execution for provider-backed tasks."""
    from conduit.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING", stream=sys.stderr)
    # Explicit flags win over the logging section of a settings file
    ctx.obj = {"logging_flags": verbose or json_logs}

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _settings_or_exit(settings: Path) -> ConduitSettings:
    try:
        return load_settings(settings.expanduser())
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _registry_or_exit(settings: ConduitSettings) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register_builtin_plugins()
    try:
        registry.configure(settings.providers)
    except (ConduitError, ValueError) as e:
        typer.echo(f"Error configuring providers: {e}", err=True)
        raise typer.Exit(1) from None
    return registry


def _read_json(path: Path, what: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        typer.echo(f"Error: {what} not found: {path}", err=True)
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        typer.echo(f"Error: {what} is not valid JSON: {e.msg} (line {e.lineno})", err=True)
        raise typer.Exit(1) from None


@app.command()
def validate(
    schema_file: Path = typer.Argument(..., help="Pipeline schema JSON (graph or legacy step array)."),
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Settings YAML; when given, provider refs are checked against its providers.",
    ),
) -> None:
    """Validate a pipeline schema without running it."""
    body = _read_json(schema_file, "Schema file")
    registry = _registry_or_exit(_settings_or_exit(settings)) if settings is not None else None

    try:
        definition = validate_schema(body, registry, schema_ref=schema_file.stem)
    except ConduitError as e:
        typer.echo(f"Invalid schema ({e.kind.value}): {e}", err=True)
        raise typer.Exit(1) from None

    forks = len(definition.fork_joins)
    typer.echo(
        f"Schema valid ({definition.source_format}): {len(definition.nodes)} nodes, "
        f"{len(definition.edges)} edges, {forks} fork(s)"
    )
    if registry is None:
        typer.echo("Provider refs not checked (no --settings given).")


@app.command()
def steps(
    task_id: str = typer.Argument(..., help="Task to inspect."),
    database: str = typer.Option(..., "--database", "-d", help="SQLAlchemy database URL."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show the step trail of a task, ordered by start time."""
    from conduit.core.persistence import ConduitDB, StepRecorder

    with ConduitDB.from_url(database, create_tables=False) as db:
        trail = StepRecorder(db).steps_for_task(task_id)

    if not trail:
        typer.echo(f"No steps recorded for task {task_id}", err=True)
        raise typer.Exit(1)

    if json_output:
        rows = [
            {
                "step_id": s.step_id,
                "node_id": s.node_id,
                "branch_id": s.branch_id,
                "provider_ref": s.provider_ref,
                "status": s.status.value,
                "attempts": s.attempts,
                "error_kind": s.error_kind.value if s.error_kind else None,
                "error_message": s.error_message,
                "started_at": s.started_at.isoformat(),
                "finished_at": s.finished_at.isoformat() if s.finished_at else None,
            }
            for s in trail
        ]
        typer.echo(json.dumps(rows, indent=2))
        return

    for s in trail:
        line = f"{s.started_at.isoformat()}  {s.node_id:<16} {s.branch_id:<24} {s.status.value:<10}"
        if s.error_kind is not None:
            line += f"  {s.error_kind.value}: {s.error_message}"
        typer.echo(line)


@app.command()
def run(
    ctx: typer.Context,
    settings: Path = typer.Option(..., "--settings", "-s", help="Path to settings YAML file."),
    feature: str = typer.Option(..., "--feature", "-f", help="Feature id to run."),
    task: str | None = typer.Option(None, "--task", "-t", help="Task id (created if it does not exist)."),
    input_json: str = typer.Option("{}", "--input", "-i", help="Task input as a JSON object."),
    schema: Path | None = typer.Option(
        None,
        "--schema",
        help="Store this schema JSON for the feature before running.",
    ),
    user: str = typer.Option("cli", "--user", help="User id recorded on a newly created task."),
) -> None:
    """Execute one task and print its outcome as JSON."""
    from conduit.core.logging import configure_logging
    from conduit.core.persistence import ConduitDB, SqlSchemaRepository, TaskStore
    from conduit.core.quota import LedgerQuotaService
    from conduit.engine.orchestrator import PipelineEngine

    config = _settings_or_exit(settings)
    if not (ctx.obj or {}).get("logging_flags"):
        configure_logging(json_output=config.logging.json_output, level=config.logging.level, stream=sys.stderr)
    try:
        input_data = json.loads(input_json)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: --input is not valid JSON: {e.msg}", err=True)
        raise typer.Exit(1) from None
    if not isinstance(input_data, dict):
        typer.echo("Error: --input must be a JSON object", err=True)
        raise typer.Exit(1)

    registry = _registry_or_exit(config)
    try:
        with ConduitDB.from_url(config.database.url, echo=config.database.echo) as db:
            repository = SqlSchemaRepository(db)
            if schema is not None:
                repository.save_schema(feature, _read_json(schema, "Schema file"))
                repository.save_feature(feature, feature)

            tasks = TaskStore(db)
            existing = tasks.get_task(task) if task is not None else None
            if existing is None:
                existing = tasks.create_task(user, feature, task_id=task, input_data=input_data)

            engine = PipelineEngine.from_settings(config, db, repository, LedgerQuotaService(db), registry=registry)
            outcome = engine.execute_pipeline(existing.task_id, feature, input_data)
    except ConduitError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    finally:
        registry.close()

    typer.echo(
        json.dumps(
            {
                "task_id": outcome.task_id,
                "status": outcome.status.value,
                "artifacts": outcome.artifacts,
                "result_urls": outcome.result_urls,
                "error": outcome.error,
                "failed_node_id": outcome.failed_node_id,
                "compensation_error": outcome.compensation_error,
            },
            indent=2,
        )
    )
    if not outcome.succeeded:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
