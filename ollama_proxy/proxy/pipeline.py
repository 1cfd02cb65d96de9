from __future__ import annotations

import asyncio
import uuid
from urllib.parse import quote
from time import perf_counter

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from ollama_proxy.audit.csv_logger import get_audit_logger
from ollama_proxy.config import get_settings
from ollama_proxy.models.schemas import AuditRecord, ProxyErrorBody, RequestContext
from ollama_proxy.observability.logging import truncate
from ollama_proxy.observability.metrics import get_gauge
from ollama_proxy.observability.system import sample_system_load
from ollama_proxy.proxy.extraction import extract_metrics, parse_json_body
from ollama_proxy.proxy.forwarder import UpstreamResponse, UpstreamTransportError, forward


logger = structlog.get_logger("proxy")


def _elapsed_ms(start: float, end: float) -> int:
    return int(round((end - start) * 1000.0))


def _raw_path(request: Request) -> str:
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1")
    return quote(request.url.path)


def build_context(request: Request, body: bytes) -> RequestContext:
    state = request.state
    client_host = request.client.host if request.client else None
    return RequestContext(
        id=getattr(state, "request_id", None) or str(uuid.uuid4()),
        session_id=getattr(state, "session_id", None) or request.headers.get("x-session-id") or client_host or "",
        start_time=getattr(state, "start_time", None) or perf_counter(),
        method=request.method,
        path=request.url.path,
        raw_path=_raw_path(request),
        body_size=len(body),
        ip_source=client_host,
        user_agent=request.headers.get("user-agent"),
    )


async def write_audit_record(record: AuditRecord) -> None:
    """Append to the audit CSV off the event loop. Failures are logged, never raised."""

    try:
        await asyncio.to_thread(get_audit_logger().append, record)
    except Exception:  # noqa: BLE001 - audit failures must not change the client response
        structlog.get_logger("audit").exception("audit.append_failed", request_id=record.request_id)


async def proxy_request(request: Request) -> Response:
    body = await request.body()

    queue_start = perf_counter()
    ctx = build_context(request, body)
    processing_start = perf_counter()

    logger.info("proxy.received", body_size=ctx.body_size)
    logger.debug("proxy.request_body", body=truncate(body))

    settings = get_settings()
    upstream: UpstreamResponse | None = None
    failure: UpstreamTransportError | None = None

    if ctx.body_size > settings.max_body_bytes:
        failure = UpstreamTransportError(
            code="PayloadTooLarge",
            message=f"Request body exceeds {settings.max_body_size_mb} MB limit",
            status_code=413,
        )
    else:
        try:
            upstream = await forward(request.method, ctx.raw_path, body, query=request.url.query or None)
        except UpstreamTransportError as exc:
            failure = exc
        except Exception as exc:  # noqa: BLE001 - every request still gets an error body and an audit row
            logger.exception("proxy.unexpected_error")
            failure = UpstreamTransportError(code=exc.__class__.__name__, message=str(exc) or exc.__class__.__name__)

    processing_end = perf_counter()

    response: Response
    if failure is None and upstream is not None:
        response = Response(content=upstream.content, status_code=upstream.status_code)
        for key, value in upstream.headers:
            response.headers.append(key, value)
        logger.info("proxy.relayed", status_code=upstream.status_code)
        status_code = upstream.status_code
        error_message = None
        response_body = parse_json_body(upstream.content)
        response_size = len(upstream.content)
    else:
        failure = failure or UpstreamTransportError(code="NoResponse", message="Upstream returned no response")
        status_code = failure.status_code or 500
        error_message = failure.message
        response_body = None
        response_size = None
        logger.error("proxy.failed", error_code=failure.code, error=failure.message, status_code=status_code)
        response = JSONResponse(
            status_code=status_code,
            content=ProxyErrorBody(message=failure.message, request_id=ctx.id).model_dump(),
        )

    metrics = extract_metrics(parse_json_body(body), response_body)
    load = sample_system_load()

    record = AuditRecord(
        request_id=ctx.id,
        ip_source=ctx.ip_source,
        user_agent=ctx.user_agent,
        http_method=ctx.method,
        endpoint=ctx.path,
        model=metrics.model,
        input_tokens=metrics.input_tokens,
        output_tokens=metrics.output_tokens,
        total_tokens=metrics.total_tokens,
        request_size_bytes=ctx.body_size,
        response_size_bytes=response_size,
        queue_time_ms=_elapsed_ms(queue_start, processing_start),
        processing_time_ms=_elapsed_ms(processing_start, processing_end),
        total_time_ms=_elapsed_ms(ctx.start_time, perf_counter()),
        http_status=status_code,
        error_message=error_message,
        model_parameters=metrics.model_parameters,
        stream_mode=metrics.stream_mode,
        system_load_cpu=load.cpu_user,
        system_load_memory=load.memory_percent,
        concurrent_requests=get_gauge().value,
        session_id=ctx.session_id,
    )
    # Appended after the response has been sent.
    response.background = BackgroundTask(write_audit_record, record)

    logger.debug(
        "proxy.metrics",
        model=record.model,
        total_tokens=record.total_tokens,
        processing_time_ms=record.processing_time_ms,
        total_time_ms=record.total_time_ms,
    )
    return response
