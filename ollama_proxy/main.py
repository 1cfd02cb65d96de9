import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from ollama_proxy.audit.csv_logger import get_audit_logger
from ollama_proxy.config import get_settings
from ollama_proxy.models.schemas import HealthResponse
from ollama_proxy.observability.logging import configure_logging
from ollama_proxy.observability.metrics import get_gauge
from ollama_proxy.observability.middleware import RequestContextMiddleware
from ollama_proxy.proxy.forwarder import close_upstream_client, probe_upstream
from ollama_proxy.proxy.pipeline import proxy_request


PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


# Every path other than /health belongs to the upstream, so FastAPI's own docs routes are off.
app = FastAPI(title="Ollama Proxy", version="0.1.0", docs_url=None, redoc_url=None, openapi_url=None)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _startup() -> None:
    settings = get_settings()
    configure_logging(
        level=settings.logging_level,
        log_dir=settings.log_dir if settings.log_file_enabled else None,
    )
    get_audit_logger().ensure_sink()
    await probe_upstream()
    structlog.get_logger("proxy").info(
        "proxy.started",
        upstream=settings.upstream_base,
        audit_file=str(get_audit_logger().path),
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    await close_upstream_client()


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        ollama_url=get_settings().ollama_url,
        concurrent_requests=get_gauge().value,
    )


@app.api_route("/api/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_api(request: Request) -> Response:
    return await proxy_request(request)


@app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_any(request: Request) -> Response:
    return await proxy_request(request)
