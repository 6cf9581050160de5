"""Catalogue of remote ML operations.

Each operation returns one result row per input row, carrying a result
payload column and a status column named ``ml_<operation>_status``.
Default batch sizes are sized so one batch fits the provider's
requests-per-minute quota inside the loop's time budget.
"""

from dataclasses import dataclass

from sluice.contracts.enums import PipelineKind
from sluice.contracts.errors import UnknownOperationError

STRUCTURED_DEFAULT_BATCH_SIZE = 10000
OBJECT_DEFAULT_BATCH_SIZE = 500


@dataclass(frozen=True, slots=True)
class OperationSpec:
    """A remote operation's identity and result shape.

    Attributes:
        name: Catalogue name (also the public wrapper function's name)
        sql_name: Warehouse-native function name
        status_column: Per-row status column in the operation's output
        result_column: Column carrying the operation's payload
        kind: Which pipeline shape the operation runs under
        default_batch_size: Rows per iteration when none is configured
        json_result: Whether the payload is a JSON document (embeddings,
            annotations, entities) rather than plain text
    """

    name: str
    sql_name: str
    status_column: str
    result_column: str
    kind: PipelineKind
    default_batch_size: int
    json_result: bool = True


def _structured(name: str, *, json_result: bool = True) -> OperationSpec:
    return OperationSpec(
        name=name,
        sql_name=f"ML.{name.upper()}",
        status_column=f"ml_{name}_status",
        result_column=f"ml_{name}_result",
        kind=PipelineKind.STRUCTURED,
        default_batch_size=STRUCTURED_DEFAULT_BATCH_SIZE,
        json_result=json_result,
    )


def _object(name: str, function: str, *, json_result: bool = True) -> OperationSpec:
    return OperationSpec(
        name=name,
        sql_name=f"ML.{function.upper()}",
        status_column=f"ml_{function}_status",
        result_column=f"ml_{function}_result",
        kind=PipelineKind.OBJECT,
        default_batch_size=OBJECT_DEFAULT_BATCH_SIZE,
        json_result=json_result,
    )


OPERATIONS: dict[str, OperationSpec] = {
    spec.name: spec
    for spec in (
        _structured("generate_embedding"),
        _structured("generate_text", json_result=False),
        _structured("understand_text"),
        _structured("translate"),
        _object("annotate_image", "annotate_image"),
        _object("transcribe", "transcribe"),
        _object("process_document", "process_document"),
        # Vision prompts run through the text generation function over object tables
        _object("vision_generate_text", "generate_text", json_result=False),
    )
}


def get_operation(name: str) -> OperationSpec:
    """Look up an operation by catalogue name.

    Raises:
        UnknownOperationError: If the name is not catalogued
    """
    try:
        return OPERATIONS[name]
    except KeyError:
        raise UnknownOperationError(name, list(OPERATIONS)) from None


def list_operations(kind: PipelineKind | None = None) -> list[OperationSpec]:
    return [spec for spec in OPERATIONS.values() if kind is None or spec.kind is kind]
