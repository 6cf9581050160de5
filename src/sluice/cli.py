# src/sluice/cli.py
"""Sluice Command Line Interface.

Entry point for the sluice CLI tool.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from sluice import __version__
from sluice.contracts.enums import PipelineKind
from sluice.contracts.errors import DependencyCycleError
from sluice.core.config import PipelineSettings, SluiceSettings, load_settings
from sluice.core.dependencies import DependencyRegistry

if TYPE_CHECKING:
    from sluice.core.ledger.recorder import RunRecorder
    from sluice.core.warehouse.database import WarehouseDB
    from sluice.operations.manager import BackendManager
    from sluice.operations.protocols import OperationBackend

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

app = typer.Typer(
    name="sluice",
    help="Sluice: incremental batch reconciliation against remote inference operations.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"sluice version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # Existence is checked in _load_dotenv for a better message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """Sluice: incremental batch reconciliation against remote inference operations."""
    from sluice.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "INFO"
    configure_logging(json_output=json_logs, level=log_level)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    panel = Panel(
        content,
        title=f"[red bold]❌ {title}[/]",
        border_style="red",
        padding=(0, 1),
    )
    console.print(panel)


def _load_settings_or_exit(settings: str) -> SluiceSettings:
    """Load settings, reporting any problem and exiting with code 1."""
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        details = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            details.append(f"{loc}: {error['msg']}")
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None


def _plan_or_exit(config: SluiceSettings, registry: DependencyRegistry) -> list[PipelineSettings]:
    """Register every configured pipeline and return them in execution order."""
    from sluice.api import register_pipelines

    try:
        return register_pipelines(registry, config.pipelines)
    except DependencyCycleError as e:
        _format_validation_error(
            title="Pipeline Dependency Cycle",
            message=str(e),
            hint="A pipeline cannot read, directly or indirectly, from its own output.",
        )
        raise typer.Exit(1) from None


def _select_pipelines(ordered: list[PipelineSettings], names: list[str] | None) -> list[PipelineSettings]:
    if not names:
        return ordered
    known = {pipeline.name for pipeline in ordered}
    unknown = [name for name in names if name not in known]
    if unknown:
        typer.echo(f"Error: Unknown pipeline(s): {', '.join(unknown)}", err=True)
        typer.echo(f"Available: {', '.join(sorted(known))}", err=True)
        raise typer.Exit(1)
    return [pipeline for pipeline in ordered if pipeline.name in names]


def _apply_log_level(config: SluiceSettings) -> None:
    """Use the settings file's log level unless --verbose already asked for DEBUG."""
    root = logging.getLogger()
    if root.level != logging.DEBUG:
        root.setLevel(config.log_level)


def _get_backend_manager() -> BackendManager:
    from sluice.operations.manager import BackendManager

    manager = BackendManager()
    manager.register_builtin_backends()
    manager.load_entrypoints()
    return manager


@app.command()
def run(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    pipeline: list[str] | None = typer.Option(
        None,
        "--pipeline",
        "-p",
        help="Run only the named pipeline(s). Repeatable.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would run, with eligible row counts, without invoking anything.",
    ),
    execute: bool = typer.Option(
        False,
        "--execute",
        "-x",
        help="Actually execute the pipelines (required for safety).",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Run configured pipelines until they converge or time out.

    Requires --execute flag to actually run (safety feature).
    Use --dry-run to inspect the plan without executing.
    """
    config = _load_settings_or_exit(settings)
    registry = DependencyRegistry()
    selected = _select_pipelines(_plan_or_exit(config, registry), pipeline)
    _apply_log_level(config)

    if dry_run:
        _print_dry_run(config, registry, selected, output_format)
        return

    if not execute:
        if output_format == "console":
            typer.echo("Pipeline configuration valid.")
            typer.echo(f"  Pipelines: {', '.join(p.name for p in selected)}")
            typer.echo("")
            typer.echo("To execute, add --execute (or -x) flag:", err=True)
            typer.echo(f"  sluice run -s {settings} --execute", err=True)
        raise typer.Exit(1)

    try:
        _execute_pipelines(config, registry, selected, output_format=output_format)
    except Exception as e:
        if output_format == "json":
            typer.echo(
                json.dumps(
                    {
                        "event": "error",
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                ),
                err=True,
            )
        else:
            typer.echo(f"Error during pipeline execution: {e}", err=True)
        raise typer.Exit(1) from None


def _open_warehouse(config: SluiceSettings) -> WarehouseDB:
    from sluice.core.warehouse.database import WarehouseDB

    return WarehouseDB.from_url(config.warehouse.url, echo=config.warehouse.echo)


def _open_recorder(config: SluiceSettings, warehouse: WarehouseDB) -> tuple[RunRecorder | None, WarehouseDB | None]:
    """Ledger recorder plus the separate ledger database it owns, if any."""
    from sluice.core.ledger.recorder import RunRecorder
    from sluice.core.warehouse.database import WarehouseDB

    if not config.ledger.enabled:
        return None, None
    if config.ledger.url is None or config.ledger.url == config.warehouse.url:
        return RunRecorder(warehouse), None
    ledger_db = WarehouseDB.from_url(config.ledger.url)
    return RunRecorder(ledger_db), ledger_db


def _print_dry_run(
    config: SluiceSettings,
    registry: DependencyRegistry,
    selected: list[PipelineSettings],
    output_format: str,
) -> None:
    from sqlalchemy.exc import SQLAlchemyError

    from sluice.api import definition_from_settings
    from sluice.contracts.errors import SourceResolutionError
    from sluice.engine.pipeline import count_eligible

    plan = []
    with _open_warehouse(config) as db:
        for settings in selected:
            definition = definition_from_settings(settings)
            try:
                eligible = count_eligible(db, registry, definition)
            except (SQLAlchemyError, SourceResolutionError) as e:
                eligible = None
                typer.echo(f"Warning: cannot count eligible rows for '{settings.name}': {e}", err=True)
            plan.append((definition, eligible))

    if output_format == "json":
        for definition, eligible in plan:
            typer.echo(json.dumps({"event": "plan", **definition.describe(), "eligible": eligible}))
        return

    typer.echo("Dry run mode - would execute:")
    for definition, eligible in plan:
        described = definition.describe()
        pending = "output not created yet" if eligible is None else f"{eligible:,} eligible rows"
        typer.echo(f"  {definition.output_name} ({described['kind']}, {described['operation']}): {pending}")
        typer.echo(f"    batch_size={described['batch_size']} budget={described['batch_duration_secs']:.0f}s")


def _execute_pipelines(
    config: SluiceSettings,
    registry: DependencyRegistry,
    selected: list[PipelineSettings],
    *,
    output_format: str,
) -> None:
    """Run each selected pipeline in order; the first failure aborts the rest."""
    from sluice.api import definition_from_settings
    from sluice.cli_formatters import create_console_formatters, create_json_formatters, subscribe_formatters
    from sluice.core.events import EventBus
    from sluice.engine.pipeline import PipelineRuntime, ReconciliationPipeline

    event_bus = EventBus()
    formatters = create_json_formatters() if output_format == "json" else create_console_formatters()
    subscribe_formatters(event_bus, formatters)

    backend: OperationBackend | None = None
    ledger_db: WarehouseDB | None = None
    db = _open_warehouse(config)
    try:
        recorder, ledger_db = _open_recorder(config, db)
        backend = _get_backend_manager().create_backend(config.backend.plugin, config.backend.options)
        runtime = PipelineRuntime(db=db, backend=backend, registry=registry, event_bus=event_bus, recorder=recorder)
        reconciler = ReconciliationPipeline(runtime)
        for settings in selected:
            reconciler.run(definition_from_settings(settings))
    finally:
        if backend is not None:
            backend.close()
        if ledger_db is not None:
            ledger_db.close()
        db.close()


@app.command()
def validate(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Validate pipeline configuration without running."""
    config = _load_settings_or_exit(settings)
    ordered = _plan_or_exit(config, DependencyRegistry())

    manager = _get_backend_manager()
    if manager.get_backend_by_name(config.backend.plugin) is None:
        available = sorted(cls.name for cls in manager.get_backends())
        _format_validation_error(
            title="Unknown Backend",
            message=f"Backend plugin '{config.backend.plugin}' is not registered",
            details=[f"available: {', '.join(available)}"],
        )
        raise typer.Exit(1)

    typer.echo("✅ Pipeline configuration valid!")
    typer.echo(f"  Warehouse: {config.warehouse.url.split('://', 1)[0]}")
    typer.echo(f"  Backend: {config.backend.plugin}")
    typer.echo(f"  Pipelines: {', '.join(p.name for p in ordered)}")


@app.command()
def plan(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Show the dependency execution order of declared names and pipelines."""
    config = _load_settings_or_exit(settings)
    registry = DependencyRegistry()
    _plan_or_exit(config, registry)

    for position, name in enumerate(registry.execution_order(), start=1):
        node = registry.get(name)
        depends = registry.dependencies_of(name)
        suffix = f" <- {', '.join(depends)}" if depends else ""
        typer.echo(f"{position:3}. {node.qualified_name} [{node.kind.value}]{suffix}")


@app.command()
def runs(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    pipeline: str | None = typer.Option(
        None,
        "--pipeline",
        "-p",
        help="Only show runs of this pipeline.",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-l",
        min=1,
        help="Maximum number of runs to show.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON.",
    ),
) -> None:
    """Show recent runs recorded in the ledger."""
    config = _load_settings_or_exit(settings)
    if not config.ledger.enabled:
        typer.echo("Error: the run ledger is disabled in these settings.", err=True)
        raise typer.Exit(1)

    ledger_db = None
    db = _open_warehouse(config)
    try:
        recorder, ledger_db = _open_recorder(config, db)
        assert recorder is not None  # ledger enabled
        records = recorder.list_runs(pipeline=pipeline, limit=limit)
    finally:
        if ledger_db is not None:
            ledger_db.close()
        db.close()

    if json_output:
        typer.echo(
            json.dumps(
                [
                    {
                        "run_id": record.run_id,
                        "pipeline": record.pipeline,
                        "kind": record.kind.value,
                        "operation": record.operation,
                        "status": record.status.value,
                        "iterations": record.iterations,
                        "rows_written": record.rows_written,
                        "started_at": record.started_at.isoformat(),
                        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
                        "error": record.error,
                    }
                    for record in records
                ]
            )
        )
        return

    if not records:
        typer.echo("No runs recorded.")
        return
    for record in records:
        typer.echo(
            f"{record.run_id[:12]}  {record.pipeline:24} {record.status.value:10} "
            f"{record.iterations:4} it  {record.rows_written:8,} rows  {record.started_at:%Y-%m-%d %H:%M:%S}"
        )
        if record.error:
            typer.echo(f"    {record.error}")


@app.command()
def operations(
    kind: PipelineKind | None = typer.Option(
        None,
        "--kind",
        "-k",
        help="Filter by pipeline kind (structured, object).",
    ),
) -> None:
    """List catalogued operations."""
    from sluice.operations.catalogue import list_operations

    for spec in list_operations(kind):
        typer.echo(
            f"  {spec.name:22} {spec.kind.value:10} {spec.sql_name:24} "
            f"status={spec.status_column} batch={spec.default_batch_size}"
        )


if __name__ == "__main__":
    app()
