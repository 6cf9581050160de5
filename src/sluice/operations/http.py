"""HTTP operation backend.

Posts one batch per call to a remote inference service:

    POST {base_url}/operations/{operation}:invoke
    {"model": "...", "config": {...}, "rows": [{...}, ...]}

    200 {"rows": [{...}, ...]}   one result per input row, in order

Error mapping:
- 429, 5xx, timeouts, network errors: every row in the batch gets a
  retryable status. The convergence loop re-selects them later.
- Other 4xx: OperationRequestError (the request itself is wrong; retrying
  cannot help).
- Malformed 2xx body: OperationContractError.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from json import JSONDecodeError
from typing import TYPE_CHECKING, Any, Self

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from sluice.contracts.errors import OperationContractError, OperationRequestError
from sluice.contracts.status import retryable_status
from sluice.core.canonical import normalize_for_json

if TYPE_CHECKING:
    from sluice.contracts.config_values import OperationConfig
    from sluice.operations.catalogue import OperationSpec

logger = structlog.get_logger(__name__)


class HTTPBackendConfig(BaseModel):
    """Options for the HTTP backend (``backend.options`` in settings)."""

    model_config = {"extra": "forbid", "frozen": True}

    base_url: str = Field(description="Service root, e.g. https://ml.example.com")
    timeout: float = Field(default=300.0, gt=0, description="Per-request timeout in seconds")
    api_key: str | None = Field(default=None, description="Sent as a bearer token when set")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")


def _contains_non_finite(obj: Any) -> bool:
    if isinstance(obj, float):
        return math.isnan(obj) or math.isinf(obj)
    if isinstance(obj, dict):
        return any(_contains_non_finite(v) for v in obj.values())
    if isinstance(obj, list):
        return any(_contains_non_finite(v) for v in obj)
    return False


class HTTPOperationBackend:
    """Operation backend speaking JSON over HTTP via httpx.

    Example:
        backend = HTTPOperationBackend(HTTPBackendConfig(base_url="https://ml.example.com"))
        results = backend.invoke(get_operation("translate"), "models.nmt", rows, config)
    """

    name = "http"

    def __init__(self, config: HTTPBackendConfig, *, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        headers = dict(config.headers)
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> Self:
        try:
            config = HTTPBackendConfig.model_validate(dict(options))
        except ValidationError as e:
            raise ValueError(f"Invalid configuration for http backend: {e}") from e
        return cls(config)

    def invoke(
        self,
        operation: OperationSpec,
        model: str,
        rows: Sequence[Mapping[str, Any]],
        config: OperationConfig,
    ) -> list[dict[str, Any]]:
        if not rows:
            return []

        payload = {
            "model": model,
            "config": config.to_payload(),
            "rows": normalize_for_json(list(rows)),
        }
        path = f"/operations/{operation.name}:invoke"

        try:
            response = self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            return self._retryable_batch(operation, len(rows), f"request timed out ({type(e).__name__})")
        except httpx.TransportError as e:
            return self._retryable_batch(operation, len(rows), f"network error ({type(e).__name__}: {e})")

        status_code = response.status_code
        if status_code == 429 or status_code >= 500:
            return self._retryable_batch(operation, len(rows), f"HTTP {status_code}")
        if status_code >= 400:
            raise OperationRequestError(operation.name, status_code, response.text[:500])

        return self._parse_rows(operation, response.text)

    def _retryable_batch(self, operation: OperationSpec, count: int, reason: str) -> list[dict[str, Any]]:
        logger.warning(
            "Operation batch failed transiently",
            operation=operation.name,
            rows=count,
            reason=reason,
        )
        status = retryable_status(reason)
        return [{operation.status_column: status} for _ in range(count)]

    def _parse_rows(self, operation: OperationSpec, text: str) -> list[dict[str, Any]]:
        try:
            body = json.loads(text)
        except JSONDecodeError as e:
            raise OperationContractError(operation.name, f"response is not valid JSON: {e}") from e
        if _contains_non_finite(body):
            raise OperationContractError(operation.name, "response contains non-finite values (NaN or Infinity)")
        if not isinstance(body, dict) or not isinstance(body.get("rows"), list):
            raise OperationContractError(operation.name, "response body must be an object with a 'rows' list")

        results: list[dict[str, Any]] = []
        for index, row in enumerate(body["rows"]):
            if not isinstance(row, dict):
                raise OperationContractError(operation.name, f"expected an object, got {type(row).__name__}", row_index=index)
            results.append(row)
        return results

    def close(self) -> None:
        self._client.close()
