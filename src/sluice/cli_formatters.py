# src/sluice/cli_formatters.py
"""CLI event formatter factories for pipeline execution output.

Each factory returns a dict mapping event types to handler callables,
suitable for subscribing to an EventBus.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import typer

from sluice.contracts.enums import LoopState
from sluice.contracts.events import IterationCompleted, PipelineBootstrapped, RunFailed, RunSummary
from sluice.core.events import EventBusProtocol


def _duration(seconds: float) -> str:
    return f"{seconds:.2f}s" if seconds < 60 else f"{seconds / 60:.1f}m"


def create_console_formatters() -> dict[type, Callable[..., None]]:
    """Create console formatters for human-readable CLI output."""

    def _format_bootstrapped(event: PipelineBootstrapped) -> None:
        if event.created:
            typer.echo(f"[{event.pipeline}] Created output table ({event.seeded_rows:,} seed rows)")
        else:
            typer.echo(f"[{event.pipeline}] Output table exists")

    def _format_iteration(event: IterationCompleted) -> None:
        typer.echo(
            f"  [{event.pipeline}] iteration {event.iteration}: "
            f"{event.eligible:,} eligible | "
            f"✓{event.rows_written:,} written | "
            f"↻{event.rejected_retryable:,} retryable | "
            f"✗{event.terminal_failures:,} failed | "
            f"{_duration(event.elapsed_secs)}"
        )

    def _format_run_summary(event: RunSummary) -> None:
        symbol = "✓" if event.state is LoopState.CONVERGED else "⚠"
        typer.echo(
            f"{symbol} [{event.pipeline}] {event.state.value.upper()}: "
            f"{event.rows_written:,} rows written in {event.iterations} iteration(s) | "
            f"{_duration(event.elapsed_secs)} total"
        )

    def _format_run_failed(event: RunFailed) -> None:
        typer.echo(f"✗ [{event.pipeline}] FAILED: {event.error_type}: {event.error_message}", err=True)

    return {
        PipelineBootstrapped: _format_bootstrapped,
        IterationCompleted: _format_iteration,
        RunSummary: _format_run_summary,
        RunFailed: _format_run_failed,
    }


def create_json_formatters() -> dict[type, Callable[..., None]]:
    """Create JSON formatters for structured CLI output (one object per line)."""

    def _format_bootstrapped_json(event: PipelineBootstrapped) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "bootstrapped",
                    "pipeline": event.pipeline,
                    "created": event.created,
                    "seeded_rows": event.seeded_rows,
                }
            )
        )

    def _format_iteration_json(event: IterationCompleted) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "iteration_completed",
                    "pipeline": event.pipeline,
                    "iteration": event.iteration,
                    "eligible": event.eligible,
                    "rows_written": event.rows_written,
                    "rejected_retryable": event.rejected_retryable,
                    "terminal_failures": event.terminal_failures,
                    "elapsed_secs": event.elapsed_secs,
                }
            )
        )

    def _format_run_summary_json(event: RunSummary) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "run_completed",
                    "pipeline": event.pipeline,
                    "run_id": event.run_id,
                    "state": event.state.value,
                    "iterations": event.iterations,
                    "rows_written": event.rows_written,
                    "elapsed_secs": event.elapsed_secs,
                }
            )
        )

    def _format_run_failed_json(event: RunFailed) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "run_failed",
                    "pipeline": event.pipeline,
                    "run_id": event.run_id,
                    "error_type": event.error_type,
                    "error": event.error_message,
                }
            ),
            err=True,
        )

    return {
        PipelineBootstrapped: _format_bootstrapped_json,
        IterationCompleted: _format_iteration_json,
        RunSummary: _format_run_summary_json,
        RunFailed: _format_run_failed_json,
    }


def subscribe_formatters(
    event_bus: EventBusProtocol,
    formatters: dict[type, Callable[..., None]],
) -> None:
    """Subscribe all formatters to the event bus."""
    for event_type, handler in formatters.items():
        event_bus.subscribe(event_type, handler)
