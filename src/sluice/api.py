"""Public pipeline functions.

Two generic entry points and one thin wrapper per catalogued operation.

Structured rows (Identity-Retry):

    run_structured_pipeline(
        runtime, "hacker_summaries", ["id"], "generate_text", "llm",
        "SELECT id, text AS prompt FROM hacker_50k WHERE text IS NOT NULL",
        operation_config={"max_output_tokens": 1024, "flatten_json_output": True},
        batch_size=1000,
    )

Object tables (Freshness-Scan):

    annotate_image(runtime, "images", "image_labels", "vision", ["LABEL_DETECTION"])
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from sluice.contracts.config_values import OperationConfig, json_document
from sluice.contracts.enums import PipelineKind
from sluice.contracts.results import RunResult
from sluice.core.config import PipelineSettings
from sluice.core.dependencies import DependencyRegistry
from sluice.core.warehouse.sources import SourceQuery
from sluice.engine.bootstrap import init_operation_name
from sluice.engine.filters import AcceptFilter
from sluice.engine.pipeline import (
    DEFAULT_BATCH_DURATION_SECS,
    DEFAULT_SEED_LIMIT,
    PipelineDefinition,
    PipelineRuntime,
    ReconciliationPipeline,
)
from sluice.operations.catalogue import OBJECT_DEFAULT_BATCH_SIZE, OperationSpec, get_operation

Resolvable = str | Mapping[str, Any]
ConfigInput = OperationConfig | Mapping[str, Any] | None


@dataclass(frozen=True, slots=True)
class OperationQuery:
    """An operation applied over an object table.

    Attributes:
        operation: Catalogue name or spec
        model: Model reference
        config: Operation parameters
        source: Relation over the source table to feed the operation;
            defaults to the source table itself
    """

    operation: str | OperationSpec
    model: str
    config: ConfigInput = None
    source: SourceQuery | None = None


def _operation(operation: str | OperationSpec) -> OperationSpec:
    return operation if isinstance(operation, OperationSpec) else get_operation(operation)


def _config(config: ConfigInput) -> OperationConfig:
    if isinstance(config, OperationConfig):
        return config
    return OperationConfig.from_mapping(config)


def declare_resolvable(registry: DependencyRegistry, source: Resolvable) -> str:
    """Declare a name (or ``{"name": ..., "schema": ...}`` mapping) and return its name."""
    registry.declare(source)
    return source if isinstance(source, str) else str(source["name"])


def run_structured_pipeline(
    runtime: PipelineRuntime,
    output_name: str,
    unique_keys: str | Sequence[str],
    operation: str | OperationSpec,
    model: str,
    source_query: SourceQuery,
    accept_filter: AcceptFilter | None = None,
    operation_config: ConfigInput = None,
    *,
    batch_size: int | None = None,
    batch_duration_secs: float = DEFAULT_BATCH_DURATION_SECS,
    seed_limit: int = DEFAULT_SEED_LIMIT,
    source_table: str | None = None,
) -> RunResult:
    """Incrementally apply ``operation`` to structured rows.

    Args:
        runtime: Warehouse, backend, registry, clock, event bus, recorder
        output_name: Output table maintained by upserts
        unique_keys: Key column(s) identifying a row
        operation: Catalogue name or spec of a structured operation
        model: Model reference
        source_query: Table name, SQL text, selectable, or callable of a PublicationContext
        accept_filter: Defaults to the operation's retryable-error filter
        operation_config: Parameters for every invocation
        batch_size: Rows per iteration; None uses the operation default,
            negative runs one uncapped pass
        batch_duration_secs: Wall-clock budget for the loop
        seed_limit: Rows invoked when creating the output table
        source_table: Dependency name of the source, when there is one

    Returns:
        RunResult in state CONVERGED or TIMED_OUT
    """
    keys = (unique_keys,) if isinstance(unique_keys, str) else tuple(unique_keys)
    definition = PipelineDefinition(
        output_name=output_name,
        kind=PipelineKind.STRUCTURED,
        operation=_operation(operation),
        model=model,
        source=source_query,
        unique_keys=keys,
        source_table=source_table,
        accept_filter=accept_filter,
        operation_config=_config(operation_config),
        batch_size=batch_size,
        batch_duration_secs=batch_duration_secs,
        seed_limit=seed_limit,
    )
    return ReconciliationPipeline(runtime).run(definition)


def run_object_pipeline(
    runtime: PipelineRuntime,
    source_table: str,
    source_query: OperationQuery,
    output_name: str,
    accept_filter: AcceptFilter | None = None,
    *,
    batch_size: int = OBJECT_DEFAULT_BATCH_SIZE,
    unique_key: str = "uri",
    updated_column: str = "updated",
    batch_duration_secs: float = DEFAULT_BATCH_DURATION_SECS,
    seed_limit: int = DEFAULT_SEED_LIMIT,
    resurface_retryable: bool = True,
) -> RunResult:
    """Incrementally apply an operation to new or updated objects.

    An object is eligible when its ``unique_key`` is absent from the
    output, its ``updated_column`` is newer than the newest value in the
    output, or (with ``resurface_retryable``) its output row still
    carries a retryable status.
    """
    definition = PipelineDefinition(
        output_name=output_name,
        kind=PipelineKind.OBJECT,
        operation=_operation(source_query.operation),
        model=source_query.model,
        source=source_query.source if source_query.source is not None else source_table,
        unique_keys=(unique_key,),
        source_table=source_table,
        accept_filter=accept_filter,
        operation_config=_config(source_query.config),
        batch_size=batch_size,
        batch_duration_secs=batch_duration_secs,
        seed_limit=seed_limit,
        updated_column=updated_column,
        resurface_retryable=resurface_retryable,
    )
    return ReconciliationPipeline(runtime).run(definition)


def _structured(
    operation: str,
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    unique_keys: str | Sequence[str],
    model: Resolvable,
    source_query: SourceQuery | None,
    operation_config: ConfigInput,
    options: Mapping[str, Any],
) -> RunResult:
    source_name = declare_resolvable(runtime.registry, source_table)
    model_name = declare_resolvable(runtime.registry, model)
    return run_structured_pipeline(
        runtime,
        output_name,
        unique_keys,
        operation,
        model_name,
        source_query if source_query is not None else source_name,
        operation_config=operation_config,
        source_table=source_name,
        **options,
    )


def generate_embedding(
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    unique_keys: str | Sequence[str],
    model: Resolvable,
    source_query: SourceQuery | None = None,
    operation_config: ConfigInput = None,
    **options: Any,
) -> RunResult:
    return _structured("generate_embedding", runtime, source_table, output_name, unique_keys, model, source_query, operation_config, options)


def generate_text(
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    unique_keys: str | Sequence[str],
    model: Resolvable,
    source_query: SourceQuery | None = None,
    operation_config: ConfigInput = None,
    **options: Any,
) -> RunResult:
    return _structured("generate_text", runtime, source_table, output_name, unique_keys, model, source_query, operation_config, options)


def understand_text(
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    unique_keys: str | Sequence[str],
    model: Resolvable,
    source_query: SourceQuery | None = None,
    operation_config: ConfigInput = None,
    **options: Any,
) -> RunResult:
    return _structured("understand_text", runtime, source_table, output_name, unique_keys, model, source_query, operation_config, options)


def translate(
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    unique_keys: str | Sequence[str],
    model: Resolvable,
    source_query: SourceQuery | None = None,
    operation_config: ConfigInput = None,
    **options: Any,
) -> RunResult:
    return _structured("translate", runtime, source_table, output_name, unique_keys, model, source_query, operation_config, options)


def _object(
    operation: str,
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    model: Resolvable,
    config: ConfigInput,
    options: Mapping[str, Any],
) -> RunResult:
    source_name = declare_resolvable(runtime.registry, source_table)
    model_name = declare_resolvable(runtime.registry, model)
    return run_object_pipeline(
        runtime,
        source_name,
        OperationQuery(operation, model_name, config),
        output_name,
        **options,
    )


def annotate_image(
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    model: Resolvable,
    features: Sequence[str],
    **options: Any,
) -> RunResult:
    """Run image annotation with the given vision feature names."""
    if isinstance(features, str) or not features:
        raise ValueError("features must be a non-empty list of feature names")
    return _object("annotate_image", runtime, source_table, output_name, model, {"vision_features": list(features)}, options)


def transcribe(
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    model: Resolvable,
    recognition_config: Mapping[str, Any],
    **options: Any,
) -> RunResult:
    """Run speech transcription; ``recognition_config`` is passed as one JSON document."""
    config = OperationConfig((("recognition_config", json_document(recognition_config)),))
    return _object("transcribe", runtime, source_table, output_name, model, config, options)


def process_document(
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    model: Resolvable,
    **options: Any,
) -> RunResult:
    return _object("process_document", runtime, source_table, output_name, model, None, options)


def vision_generate_text(
    runtime: PipelineRuntime,
    source_table: Resolvable,
    output_name: str,
    model: Resolvable,
    prompt: str,
    llm_config: Mapping[str, Any] | None = None,
    **options: Any,
) -> RunResult:
    """Generate text about visual content; ``llm_config`` entries join ``prompt`` in the operation config."""
    return _object("vision_generate_text", runtime, source_table, output_name, model, {"prompt": prompt, **(llm_config or {})}, options)


def definition_from_settings(settings: PipelineSettings) -> PipelineDefinition:
    """Build the immutable definition of a configured pipeline."""
    return PipelineDefinition(
        output_name=settings.name,
        kind=settings.kind,
        operation=get_operation(settings.operation),
        model=settings.model,
        source=settings.source_query if settings.source_query is not None else settings.source_table,
        unique_keys=tuple(settings.resolved_unique_keys),
        source_table=settings.source_table,
        operation_config=OperationConfig.from_mapping(settings.operation_config),
        batch_size=settings.batch_size,
        batch_duration_secs=settings.batch_duration_secs,
        seed_limit=settings.seed_limit,
        updated_column=settings.updated_column,
        resurface_retryable=settings.resurface_retryable,
    )


def register_pipelines(registry: DependencyRegistry, pipelines: Sequence[PipelineSettings]) -> list[PipelineSettings]:
    """Declare every pipeline's inputs and outputs and return them in execution order.

    A pipeline whose source table is another pipeline's output runs after it.

    Raises:
        DependencyCycleError: If pipelines read each other's outputs in a cycle
    """
    by_output = {pipeline.name: pipeline for pipeline in pipelines}
    for pipeline in pipelines:
        declare_resolvable(registry, _qualified(pipeline.source_table, pipeline.source_schema))
        declare_resolvable(registry, _qualified(pipeline.model, pipeline.model_schema))
        init_name = init_operation_name(pipeline.name)
        registry.declare_operation(init_name, [pipeline.source_table, pipeline.model])
        registry.publish(pipeline.name, unique_key=pipeline.resolved_unique_keys, dependencies=[init_name])
    return [by_output[name] for name in registry.execution_order() if name in by_output]


def _qualified(name: str, schema: str | None) -> Resolvable:
    return {"name": name, "schema": schema} if schema else name
