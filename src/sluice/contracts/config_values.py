"""Operation configuration payloads as a tagged union.

Operation parameters (prompts, recognition settings, feature lists, model
knobs) are open-ended key/value maps. They are carried as explicit typed
values and serialized structurally, never interpolated into query text.

Variants:
- Scalar: str, int, float, bool, or None
- Array: ordered sequence of values
- Struct: ordered named fields
- JsonDocument: opaque JSON object passed through as one value

Example:
    config = OperationConfig.from_mapping({
        "prompt": "Describe the image in less than 20 words",
        "flatten_json_output": True,
        "vision_features": ["LABEL_DETECTION", "TEXT_DETECTION"],
    })
    config.to_payload()
    # {"prompt": "...", "flatten_json_output": True, "vision_features": [...]}
"""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from sluice.contracts.errors import ConfigValueError

ScalarType = str | int | float | bool | None


@dataclass(frozen=True, slots=True)
class Scalar:
    value: ScalarType

    def __post_init__(self) -> None:
        if isinstance(self.value, float) and (math.isnan(self.value) or math.isinf(self.value)):
            raise ConfigValueError(f"Non-finite float is not a valid config value: {self.value}")

    def to_payload(self) -> ScalarType:
        return self.value


@dataclass(frozen=True, slots=True)
class Array:
    items: tuple[ConfigValue, ...]

    def to_payload(self) -> list[Any]:
        return [item.to_payload() for item in self.items]


@dataclass(frozen=True, slots=True)
class Struct:
    fields: tuple[tuple[str, ConfigValue], ...]

    def __post_init__(self) -> None:
        _validate_names([name for name, _ in self.fields], "struct field")

    def to_payload(self) -> dict[str, Any]:
        return {name: value.to_payload() for name, value in self.fields}


@dataclass(frozen=True, slots=True)
class JsonDocument:
    """An opaque JSON object passed as a single value.

    Unlike Struct, keys are not required to be identifiers. Used for
    provider-defined documents such as speech recognition configs.
    """

    fields: tuple[tuple[str, ConfigValue], ...]

    def to_payload(self) -> dict[str, Any]:
        return {name: value.to_payload() for name, value in self.fields}


ConfigValue = Scalar | Array | Struct | JsonDocument


def _validate_names(names: Sequence[str], context: str) -> None:
    seen: set[str] = set()
    for name in names:
        if not isinstance(name, str) or not name.isidentifier():
            raise ConfigValueError(f"{context} name {name!r} is not a valid identifier")
        if name in seen:
            raise ConfigValueError(f"Duplicate {context} name {name!r}")
        seen.add(name)


def to_config_value(obj: Any, *, _path: str = "config") -> ConfigValue:
    """Convert a plain Python value into a ConfigValue.

    Mappings become Struct, sequences (other than str/bytes) become Array,
    primitives become Scalar. Existing ConfigValue instances pass through.

    Raises:
        ConfigValueError: For unsupported types, non-finite floats, or
            mapping keys that are not identifiers.
    """
    if isinstance(obj, Scalar | Array | Struct | JsonDocument):
        return obj
    if obj is None or isinstance(obj, str | bool | int | float):
        try:
            return Scalar(obj)
        except ConfigValueError as e:
            raise ConfigValueError(f"{_path}: {e}") from None
    if isinstance(obj, Mapping):
        return Struct(tuple((str(k), to_config_value(v, _path=f"{_path}.{k}")) for k, v in obj.items()))
    if isinstance(obj, Sequence) and not isinstance(obj, bytes | bytearray):
        return Array(tuple(to_config_value(v, _path=f"{_path}[{i}]") for i, v in enumerate(obj)))
    raise ConfigValueError(f"{_path}: unsupported config value type {type(obj).__name__}")


def json_document(obj: Mapping[str, Any]) -> JsonDocument:
    """Wrap a JSON-like mapping whose keys need not be identifiers."""
    return JsonDocument(tuple((str(k), _document_value(v, str(k))) for k, v in obj.items()))


def _document_value(obj: Any, path: str) -> ConfigValue:
    if isinstance(obj, Mapping):
        return json_document(obj)
    if isinstance(obj, Sequence) and not isinstance(obj, str | bytes | bytearray):
        return Array(tuple(_document_value(v, f"{path}[{i}]") for i, v in enumerate(obj)))
    return to_config_value(obj, _path=path)


@dataclass(frozen=True, slots=True)
class OperationConfig:
    """Ordered, immutable operation parameters.

    Entry names are identifiers; they map to the named parameters of the
    remote operation.
    """

    entries: tuple[tuple[str, ConfigValue], ...] = ()

    def __post_init__(self) -> None:
        _validate_names([name for name, _ in self.entries], "config entry")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> OperationConfig:
        if mapping is None:
            return cls()
        return cls(tuple((name, to_config_value(value, _path=name)) for name, value in mapping.items()))

    def merged(self, other: OperationConfig) -> OperationConfig:
        """Return a config where entries from ``other`` override ours."""
        combined = dict(self.entries)
        combined.update(other.entries)
        return OperationConfig(tuple(combined.items()))

    def to_payload(self) -> dict[str, Any]:
        return {name: value.to_payload() for name, value in self.entries}

    def __iter__(self) -> Iterator[tuple[str, ConfigValue]]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, name: object) -> bool:
        return any(entry_name == name for entry_name, _ in self.entries)
