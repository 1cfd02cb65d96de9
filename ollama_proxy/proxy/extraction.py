from __future__ import annotations

import json
from typing import Any

from ollama_proxy.models.schemas import ExtractedMetrics


MODEL_PARAMETER_KEYS = ("temperature", "top_p", "top_k", "max_tokens", "num_predict", "repeat_penalty")
UNKNOWN_MODEL = "unknown"

_MISSING = object()


def _lookup(source: Any, path: str) -> Any:
    current = source
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return _MISSING
        current = current[key]
    return current


def first_present(sources: list[tuple[Any, str]], default: Any) -> Any:
    """Evaluate ``(source, "dotted.path")`` lookups in order; first truthy value wins."""

    for source, path in sources:
        value = _lookup(source, path)
        if value is not _MISSING and value:
            return value
    return default


def parse_json_body(raw: bytes | str | None) -> dict[str, Any] | None:
    """Decode a JSON object body.

    A buffered NDJSON stream decodes to its last object line, which is where
    Ollama reports the final token counts.
    """

    if not raw:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    try:
        payload = json.loads(raw)
    except ValueError:
        payload = None
        for line in reversed(raw.splitlines()):
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except ValueError:
                continue
            break

    return payload if isinstance(payload, dict) else None


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def extract_model_parameters(request_body: dict[str, Any] | None) -> dict[str, Any] | None:
    if not request_body:
        return None
    params = {key: request_body[key] for key in MODEL_PARAMETER_KEYS if key in request_body}
    return params or None


def extract_metrics(request_body: dict[str, Any] | None, response_body: dict[str, Any] | None) -> ExtractedMetrics:
    model = first_present(
        [(request_body, "model"), (response_body, "model"), (response_body, "message.model")],
        default=UNKNOWN_MODEL,
    )
    input_tokens = _as_int(
        first_present([(response_body, "prompt_eval_count"), (response_body, "usage.prompt_tokens")], default=0)
    )
    output_tokens = _as_int(
        first_present([(response_body, "eval_count"), (response_body, "usage.completion_tokens")], default=0)
    )

    return ExtractedMetrics(
        model=str(model),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        model_parameters=extract_model_parameters(request_body),
        stream_mode=bool(first_present([(request_body, "stream")], default=False)),
    )
