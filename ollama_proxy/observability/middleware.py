from __future__ import annotations

import uuid
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import Headers, MutableHeaders

from ollama_proxy.observability.metrics import get_gauge


SESSION_HEADER = "x-session-id"
SLOW_REQUEST_MS = 5000.0


def _client_host(scope: dict[str, Any]) -> str | None:
    client = scope.get("client")
    if client:
        return client[0]
    return None


class RequestContextMiddleware:
    """Assigns request/session ids, tracks in-flight requests, and writes access logs."""

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        path = scope.get("path")
        method = scope.get("method")
        session_id = Headers(scope=scope).get(SESSION_HEADER) or _client_host(scope) or ""

        start = perf_counter()
        state = scope.setdefault("state", {})
        state["request_id"] = request_id
        state["session_id"] = session_id
        state["start_time"] = start

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            session_id=session_id,
            path=path,
            method=method,
        )

        gauge = get_gauge()
        gauge.increment()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            # The response has been fully dispatched (or the app gave up) by now.
            in_flight = gauge.decrement()
            elapsed_ms = (perf_counter() - start) * 1000.0

            access = structlog.get_logger("access")
            fields = {
                "status_code": status_code,
                "elapsed_ms": round(elapsed_ms, 2),
                "concurrent_requests": in_flight,
            }
            if status_code >= 400:
                access.error("http_request", **fields)
            elif elapsed_ms > SLOW_REQUEST_MS:
                access.warning("http_request.slow", **fields)
            else:
                access.info("http_request", **fields)

            structlog.contextvars.clear_contextvars()
