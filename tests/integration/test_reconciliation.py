# tests/integration/test_reconciliation.py
"""End-to-end reconciliation runs through the public pipeline functions.

Each test drives bootstrap, eligibility, invocation and merge against
an in-memory warehouse with the scripted backend, then inspects the
output table and the run ledger.
"""

from collections.abc import Mapping
from typing import Any

import pytest

from sluice.api import OperationQuery, run_object_pipeline, run_structured_pipeline
from sluice.contracts.enums import LoopState, RunStatus
from sluice.contracts.events import IterationCompleted, RunSummary
from sluice.contracts.status import retryable_status
from sluice.core.events import EventBus
from sluice.core.ledger.recorder import RunRecorder
from sluice.core.warehouse.database import WarehouseDB
from sluice.engine.clock import MockClock
from sluice.engine.pipeline import PipelineRuntime
from sluice.operations.catalogue import OperationSpec
from sluice.testing.scripted import ScriptedOperationBackend
from tests.conftest import create_articles, create_objects, create_output, read_rows, touch

pytestmark = pytest.mark.integration

RESULT = "ml_generate_text_result"
STATUS = "ml_generate_text_status"
TERMINAL = "The input is blocked by safety filters"


def _summaries(db: WarehouseDB, keys: str) -> None:
    create_articles(db, [{"id": key, "body": f"text {key}"} for key in keys])
    create_output(db, "summaries", ["id", "body", RESULT, STATUS])


def _run_summaries(runtime: PipelineRuntime, **options: Any):
    return run_structured_pipeline(runtime, "summaries", "id", "generate_text", "llm", "articles", **options)


def _run_embeddings(runtime: PipelineRuntime, **options: Any):
    return run_structured_pipeline(runtime, "embeddings", "id", "generate_embedding", "embedder", "articles", **options)


class TestRetryScenario:
    def test_retryable_row_is_picked_up_with_the_next_batch(self, db: WarehouseDB) -> None:
        _summaries(db, "ABC")
        backend = ScriptedOperationBackend(outcomes={"B": [retryable_status("quota exceeded"), ""]})
        runtime = PipelineRuntime(db=db, backend=backend, clock=MockClock())

        result = _run_summaries(runtime, batch_size=2)

        assert result.state is LoopState.CONVERGED
        assert [(it.eligible, it.rows_written) for it in result.iterations] == [(2, 1), (2, 2), (0, 0)]
        assert [call.keys for call in backend.calls] == [("A", "B"), ("B", "C")]
        assert result.bootstrap is not None
        assert result.bootstrap.created is False
        rows = read_rows(db, "summaries")
        assert [(row["id"], row[STATUS]) for row in rows] == [("A", ""), ("B", ""), ("C", "")]
        assert all(row[RESULT] == "generate_text[llm]" for row in rows)

    def test_retry_overwrites_with_exactly_one_success_row(self, db: WarehouseDB) -> None:
        _summaries(db, "AB")

        def result(operation: OperationSpec, model: str, row: Mapping[str, Any], attempt: int) -> str:
            return f"attempt {attempt}"

        backend = ScriptedOperationBackend(outcomes={"A": [retryable_status("deadline exceeded"), ""]}, result=result)

        _run_summaries(PipelineRuntime(db=db, backend=backend, clock=MockClock()), batch_size=5)

        rows = read_rows(db, "summaries")
        assert [row["id"] for row in rows] == ["A", "B"]
        assert rows[0][RESULT] == "attempt 2"
        assert rows[0][STATUS] == ""


class TestIdempotentRerun:
    def test_second_run_invokes_nothing(self, db: WarehouseDB) -> None:
        create_articles(db, [{"id": key, "body": key} for key in "abcdefg"])
        _run_summaries(PipelineRuntime(db=db, backend=ScriptedOperationBackend(), clock=MockClock()), batch_size=3)
        first = read_rows(db, "summaries")
        backend = ScriptedOperationBackend()

        result = _run_summaries(PipelineRuntime(db=db, backend=backend, clock=MockClock()), batch_size=3)

        assert result.rows_written == 0
        assert result.bootstrap is not None
        assert result.bootstrap.created is False
        assert backend.calls == []
        assert read_rows(db, "summaries") == first

    def test_new_source_rows_are_picked_up(self, db: WarehouseDB) -> None:
        from sqlalchemy import insert

        articles = create_articles(db, [{"id": "a", "body": "a"}])
        _run_summaries(PipelineRuntime(db=db, backend=ScriptedOperationBackend(), clock=MockClock()))
        with db.connection() as conn:
            conn.execute(insert(articles), [{"id": "b", "body": "b"}, {"id": "c", "body": "c"}])
        backend = ScriptedOperationBackend()

        result = _run_summaries(PipelineRuntime(db=db, backend=backend, clock=MockClock()))

        assert backend.invoked_keys == ["b", "c"]
        assert result.rows_written == 2


class TestTerminalFailures:
    def test_terminal_row_is_written_once_and_never_retried(self, db: WarehouseDB) -> None:
        _summaries(db, "ABC")
        backend = ScriptedOperationBackend(outcomes={"B": [TERMINAL, ""]})
        runtime = PipelineRuntime(db=db, backend=backend, clock=MockClock())

        first = _run_summaries(runtime, batch_size=1)
        second = _run_summaries(runtime, batch_size=1)

        assert backend.attempts["B"] == 1
        assert [it.terminal_failures for it in first.iterations] == [0, 1, 0, 0]
        assert second.rows_written == 0
        row_b = read_rows(db, "summaries")[1]
        assert row_b[STATUS] == TERMINAL
        assert row_b[RESULT] is None


class TestTimeBudget:
    def test_times_out_with_only_whole_batches_merged(self, db: WarehouseDB) -> None:
        _summaries(db, "abcde")
        clock = MockClock()
        backend = ScriptedOperationBackend(clock=clock, tick_secs=100)
        bus = EventBus()
        summaries: list[RunSummary] = []
        bus.subscribe(RunSummary, summaries.append)

        result = _run_summaries(
            PipelineRuntime(db=db, backend=backend, clock=clock, event_bus=bus),
            batch_size=2,
            batch_duration_secs=150,
        )

        assert result.state is LoopState.TIMED_OUT
        assert [it.rows_written for it in result.iterations] == [2, 2]
        assert [row["id"] for row in read_rows(db, "summaries")] == ["a", "b", "c", "d"]
        assert summaries[0].state is LoopState.TIMED_OUT

    def test_timed_out_run_resumes_where_it_stopped(self, db: WarehouseDB) -> None:
        _summaries(db, "abcde")
        clock = MockClock()
        runtime = PipelineRuntime(db=db, backend=ScriptedOperationBackend(clock=clock, tick_secs=100), clock=clock)
        _run_summaries(runtime, batch_size=2, batch_duration_secs=150)
        backend = ScriptedOperationBackend()

        result = _run_summaries(PipelineRuntime(db=db, backend=backend, clock=MockClock()), batch_size=2)

        assert result.converged
        assert backend.invoked_keys == ["e"]


class TestFreshnessScenario:
    def test_replaced_object_is_reprocessed(self, db: WarehouseDB) -> None:
        objects = create_objects(
            db,
            [
                {"uri": "gs://media/x.png", "updated": 1, "content_type": "image/png"},
                {"uri": "gs://media/y.png", "updated": 2, "content_type": "image/png"},
            ],
        )

        def labels(operation: OperationSpec, model: str, row: Mapping[str, Any], attempt: int) -> str:
            return f"labels@{row['updated']}"

        query = OperationQuery("annotate_image", "vision", {"vision_features": ["LABEL_DETECTION"]})
        first = ScriptedOperationBackend(key_columns=["uri"], result=labels)
        run_object_pipeline(PipelineRuntime(db=db, backend=first, clock=MockClock()), "objects", query, "labels")
        touch(db, objects, "uri", "gs://media/x.png", updated=5)
        second = ScriptedOperationBackend(key_columns=["uri"], result=labels)

        result = run_object_pipeline(PipelineRuntime(db=db, backend=second, clock=MockClock()), "objects", query, "labels")

        assert second.invoked_keys == ["gs://media/x.png"]
        assert result.rows_written == 1
        rows = {row["uri"]: row for row in read_rows(db, "labels", order_by="uri")}
        assert len(rows) == 2
        assert rows["gs://media/x.png"]["updated"] == 5
        assert rows["gs://media/x.png"]["ml_annotate_image_result"] == "labels@5"
        assert rows["gs://media/y.png"]["ml_annotate_image_result"] == "labels@2"

    def test_replaced_object_retried_after_a_newer_object_lands(self, db: WarehouseDB) -> None:
        from sqlalchemy import insert

        x, y = "gs://media/x.png", "gs://media/y.png"
        objects = create_objects(db, [{"uri": x, "updated": 1, "content_type": "image/png"}])

        def labels(operation: OperationSpec, model: str, row: Mapping[str, Any], attempt: int) -> str:
            return f"labels@{row['updated']}"

        query = OperationQuery("annotate_image", "vision", {"vision_features": ["LABEL_DETECTION"]})
        first = ScriptedOperationBackend(key_columns=["uri"], result=labels)
        run_object_pipeline(PipelineRuntime(db=db, backend=first, clock=MockClock()), "objects", query, "labels")
        touch(db, objects, "uri", x, updated=5)
        with db.connection() as conn:
            conn.execute(insert(objects), [{"uri": y, "updated": 6, "content_type": "image/png"}])
        second = ScriptedOperationBackend(key_columns=["uri"], outcomes={x: [retryable_status("quota exceeded"), ""]}, result=labels)

        result = run_object_pipeline(PipelineRuntime(db=db, backend=second, clock=MockClock()), "objects", query, "labels")

        assert result.converged
        assert [call.keys for call in second.calls] == [(x, y), (x,)]
        rows = {row["uri"]: row for row in read_rows(db, "labels", order_by="uri")}
        assert rows[x]["updated"] == 5
        assert rows[x]["ml_annotate_image_result"] == "labels@5"
        assert rows[y]["updated"] == 6

        third = ScriptedOperationBackend(key_columns=["uri"])
        run_object_pipeline(PipelineRuntime(db=db, backend=third, clock=MockClock()), "objects", query, "labels")
        assert third.calls == []

    def test_unchanged_objects_are_not_reprocessed(self, db: WarehouseDB) -> None:
        create_objects(db, [{"uri": f"gs://media/{n}.wav", "updated": n, "content_type": "audio/wav"} for n in range(1, 4)])
        query = OperationQuery("transcribe", "speech", {"recognition_config": {"language_codes": ["en-US"]}})
        run_object_pipeline(
            PipelineRuntime(db=db, backend=ScriptedOperationBackend(key_columns=["uri"]), clock=MockClock()), "objects", query, "transcripts"
        )
        backend = ScriptedOperationBackend(key_columns=["uri"])

        result = run_object_pipeline(PipelineRuntime(db=db, backend=backend, clock=MockClock()), "objects", query, "transcripts")

        assert backend.calls == []
        assert result.rows_written == 0


class TestResultColumns:
    def test_embeddings_arrive_after_an_empty_first_run(self, db: WarehouseDB) -> None:
        from sqlalchemy import insert

        articles = create_articles(db, [])
        _run_embeddings(PipelineRuntime(db=db, backend=ScriptedOperationBackend(), clock=MockClock()))
        with db.connection() as conn:
            conn.execute(insert(articles), [{"id": "a", "body": "a"}, {"id": "b", "body": "bb"}])

        def vector(operation: OperationSpec, model: str, row: Mapping[str, Any], attempt: int) -> list[float]:
            return [float(len(row["body"])), 0.5]

        result = _run_embeddings(PipelineRuntime(db=db, backend=ScriptedOperationBackend(result=vector), clock=MockClock()))

        assert result.converged
        assert result.rows_written == 2
        rows = read_rows(db, "embeddings")
        assert [row["ml_generate_embedding_result"] for row in rows] == [[1.0, 0.5], [2.0, 0.5]]

    def test_structured_text_results_after_an_all_retryable_seed(self, db: WarehouseDB) -> None:
        create_articles(db, [{"id": "a", "body": "a"}])

        def entities(operation: OperationSpec, model: str, row: Mapping[str, Any], attempt: int) -> dict[str, Any]:
            return {"entities": [row["body"]]}

        backend = ScriptedOperationBackend(outcomes={"a": [retryable_status("quota exceeded"), ""]}, result=entities)

        result = _run_summaries(PipelineRuntime(db=db, backend=backend, clock=MockClock()), seed_limit=1)

        assert result.converged
        assert result.bootstrap is not None
        assert result.bootstrap.seeded_rows == 0
        assert read_rows(db, "summaries")[0][RESULT] == '{"entities":["a"]}'


class TestLedgerAndEvents:
    def test_run_is_recorded_with_every_iteration(self, db: WarehouseDB) -> None:
        create_articles(db, [{"id": str(n), "body": "x"} for n in range(5)])
        recorder = RunRecorder(db)
        bus = EventBus()
        completed: list[IterationCompleted] = []
        bus.subscribe(IterationCompleted, completed.append)
        runtime = PipelineRuntime(db=db, backend=ScriptedOperationBackend(), clock=MockClock(), event_bus=bus, recorder=recorder)

        result = _run_summaries(runtime, batch_size=2, seed_limit=1)

        (record,) = recorder.list_runs(pipeline="summaries")
        assert record.run_id == result.run_id
        assert record.status is RunStatus.CONVERGED
        assert record.rows_written == 4
        assert record.iterations == 3
        assert [it.rows_written for it in recorder.get_iterations(record.run_id)] == [2, 2, 0]
        assert [event.iteration for event in completed] == [1, 2, 3]
