from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class RequestContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    start_time: float
    method: str
    path: str
    raw_path: str
    body_size: int
    ip_source: str | None = None
    user_agent: str | None = None


class SystemLoadSample(BaseModel):
    cpu_user: int = 0
    memory_percent: int = 0


class ExtractedMetrics(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model: str = "unknown"
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    model_parameters: dict[str, Any] | None = None
    stream_mode: bool = False


class AuditRecord(BaseModel):
    """One row of the audit CSV.

    Field order is the on-disk column order (after the leading ``timestamp``,
    which the writer stamps at append time).
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    request_id: str | None = None
    ip_source: str | None = None
    user_agent: str | None = None
    http_method: str | None = None
    endpoint: str | None = None
    model: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    request_size_bytes: int | None = None
    response_size_bytes: int | None = None
    queue_time_ms: int | None = None
    processing_time_ms: int | None = None
    total_time_ms: int | None = None
    http_status: int | None = None
    error_message: str | None = None
    model_parameters: dict[str, Any] | None = None
    stream_mode: bool | None = None
    system_load_cpu: int | None = None
    system_load_memory: int | None = None
    concurrent_requests: int | None = None
    session_id: str | None = None


AUDIT_COLUMNS: tuple[str, ...] = ("timestamp", *AuditRecord.model_fields)


class HealthResponse(BaseModel):
    status: str = "healthy"
    ollama_url: str
    concurrent_requests: int


class ProxyErrorBody(BaseModel):
    error: str = "Proxy error"
    message: str
    request_id: str
