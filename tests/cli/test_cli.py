"""Tests for the Sluice CLI."""

import json
import re
from pathlib import Path

import pytest
from typer.testing import CliRunner

from sluice.core.warehouse.database import WarehouseDB
from tests.conftest import create_articles, read_rows

runner = CliRunner()


def _write_settings(tmp_path: Path, *, extra_pipeline: str = "", ledger: str = "", operation: str = "generate_text") -> Path:
    warehouse = tmp_path / "warehouse.db"
    config_file = tmp_path / "settings.yaml"
    config_file.write_text(f"""
warehouse:
  url: "sqlite:///{warehouse}"

backend:
  plugin: scripted
  options:
    key_columns: [id]
    outcomes:
      c: ["A retryable error occurred: quota exceeded", ""]
{ledger}
pipelines:
  - name: summaries
    kind: structured
    operation: {operation}
    model: llm
    source_table: articles
    source_query: "SELECT id, body AS prompt FROM articles"
    unique_keys: [id]
    batch_size: 2
    seed_limit: 1
{extra_pipeline}""")
    return config_file


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    config_file = _write_settings(tmp_path)
    with WarehouseDB.from_url(f"sqlite:///{tmp_path / 'warehouse.db'}") as db:
        create_articles(db, [{"id": key, "body": key.upper()} for key in "abcde"])
    return config_file


def _json_lines(output: str) -> list[dict]:
    events = []
    for line in output.splitlines():
        if line.startswith("{") and '"event"' in line:
            events.append(json.loads(line))
    return events


class TestCLIBasics:
    def test_version_flag(self) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "sluice version 0.1.0" in result.output

    def test_help_lists_commands(self) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("run", "validate", "plan", "runs", "operations"):
            assert command in result.output

    def test_missing_env_file(self, tmp_path: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--env-file", str(tmp_path / "absent.env"), "operations"])

        assert result.exit_code == 1
        assert ".env file not found" in result.output


class TestValidateCommand:
    def test_valid_settings(self, settings_file: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(settings_file)])

        assert result.exit_code == 0, result.output
        assert "Pipeline configuration valid" in result.output
        assert "Backend: scripted" in result.output
        assert "Pipelines: summaries" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1
        assert "File Not Found" in result.output

    def test_invalid_operation(self, tmp_path: Path) -> None:
        from sluice.cli import app

        config_file = _write_settings(tmp_path, operation="summarize")

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(config_file)])

        assert result.exit_code == 1
        assert "Configuration Validation Failed" in result.output

    def test_unknown_backend(self, tmp_path: Path) -> None:
        from sluice.cli import app

        config_file = _write_settings(tmp_path)
        config_file.write_text(config_file.read_text().replace("plugin: scripted", "plugin: grpc"))

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(config_file)])

        assert result.exit_code == 1
        assert "Unknown Backend" in result.output

    def test_dependency_cycle(self, tmp_path: Path) -> None:
        from sluice.cli import app

        config_file = _write_settings(
            tmp_path,
            extra_pipeline="""
  - name: articles
    kind: structured
    operation: translate
    model: nmt
    source_table: summaries
    unique_keys: [id]
""",
        )

        result = runner.invoke(app, ["--no-dotenv", "validate", "-s", str(config_file)])

        assert result.exit_code == 1
        assert "Dependency Cycle" in result.output


class TestPlanCommand:
    def test_execution_order(self, settings_file: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "plan", "-s", str(settings_file)])

        assert result.exit_code == 0, result.output
        lines = [line.strip() for line in result.output.splitlines() if re.match(r"^\s*\d+\. ", line)]
        assert lines == [
            "1. articles [declaration]",
            "2. llm [declaration]",
            "3. init_summaries [operation] <- articles, llm",
            "4. summaries [incremental] <- init_summaries",
        ]


class TestRunCommand:
    def test_requires_execute_flag(self, settings_file: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings_file)])

        assert result.exit_code == 1
        assert "--execute" in result.output

    def test_dry_run_before_bootstrap(self, settings_file: Path, tmp_path: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings_file), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "summaries (structured, generate_text): output not created yet" in result.output
        with WarehouseDB.from_url(f"sqlite:///{tmp_path / 'warehouse.db'}") as db:
            assert not db.has_table("summaries")

    def test_execute_converges(self, settings_file: Path, tmp_path: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings_file), "--execute"])

        assert result.exit_code == 0, result.output
        assert "[summaries] Created output table (1 seed rows)" in result.output
        assert "CONVERGED" in result.output
        with WarehouseDB.from_url(f"sqlite:///{tmp_path / 'warehouse.db'}") as db:
            rows = read_rows(db, "summaries")
        assert [row["id"] for row in rows] == ["a", "b", "c", "d", "e"]
        assert {row["ml_generate_text_status"] for row in rows} == {""}

    def test_execute_json_events(self, settings_file: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings_file), "-x", "--format", "json"])

        assert result.exit_code == 0, result.output
        events = _json_lines(result.output)
        names = [event["event"] for event in events]
        assert names[0] == "bootstrapped"
        assert names[-1] == "run_completed"
        assert "iteration_completed" in names
        assert events[-1]["state"] == "converged"
        assert events[-1]["rows_written"] == 4

    def test_dry_run_after_execute_counts_eligible(self, settings_file: Path) -> None:
        from sluice.cli import app

        runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings_file), "-x"])
        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings_file), "-n", "-f", "json"])

        assert result.exit_code == 0, result.output
        (plan,) = _json_lines(result.output)
        assert plan["event"] == "plan"
        assert plan["eligible"] == 0
        assert plan["batch_size"] == 2

    def test_unknown_pipeline_selection(self, settings_file: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings_file), "-p", "missing", "-x"])

        assert result.exit_code == 1
        assert "Unknown pipeline(s): missing" in result.output

    def test_execution_failure_exits_nonzero(self, tmp_path: Path) -> None:
        from sluice.cli import app

        # No source table in the warehouse: bootstrap fails
        config_file = _write_settings(tmp_path)

        result = runner.invoke(app, ["--no-dotenv", "run", "-s", str(config_file), "-x", "-f", "json"])

        assert result.exit_code == 1
        errors = [event for event in _json_lines(result.output) if event["event"] == "error"]
        assert errors[0]["error_type"] == "BootstrapError"


class TestRunsCommand:
    def test_lists_recorded_runs(self, settings_file: Path) -> None:
        from sluice.cli import app

        runner.invoke(app, ["--no-dotenv", "run", "-s", str(settings_file), "-x"])

        result = runner.invoke(app, ["--no-dotenv", "runs", "-s", str(settings_file), "--json"])

        assert result.exit_code == 0, result.output
        records = json.loads(next(line for line in result.output.splitlines() if line.startswith("[")))
        assert len(records) == 1
        assert records[0]["pipeline"] == "summaries"
        assert records[0]["status"] == "converged"
        assert records[0]["rows_written"] == 4

    def test_empty_ledger(self, settings_file: Path) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["--no-dotenv", "runs", "-s", str(settings_file)])

        assert result.exit_code == 0, result.output
        assert "No runs recorded." in result.output

    def test_disabled_ledger(self, tmp_path: Path) -> None:
        from sluice.cli import app

        config_file = _write_settings(tmp_path, ledger="ledger:\n  enabled: false\n")

        result = runner.invoke(app, ["--no-dotenv", "runs", "-s", str(config_file)])

        assert result.exit_code == 1
        assert "ledger is disabled" in result.output


class TestOperationsCommand:
    def test_lists_all_operations(self) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["operations"])

        assert result.exit_code == 0
        assert "generate_embedding" in result.output
        assert "vision_generate_text" in result.output

    def test_filter_by_kind(self) -> None:
        from sluice.cli import app

        result = runner.invoke(app, ["operations", "--kind", "object"])

        assert result.exit_code == 0
        assert "annotate_image" in result.output
        assert "translate" not in result.output
