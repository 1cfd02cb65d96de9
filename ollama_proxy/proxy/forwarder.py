from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog

from ollama_proxy.config import get_settings


# httpx hands back a decoded body, so encoding/framing headers from upstream no longer apply.
_DROPPED_RESPONSE_HEADERS = frozenset(
    {"connection", "keep-alive", "transfer-encoding", "content-encoding", "content-length"}
)

_client: httpx.AsyncClient | None = None

logger = structlog.get_logger("proxy")


@dataclass(frozen=True)
class UpstreamResponse:
    status_code: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    content: bytes = b""


class UpstreamTransportError(Exception):
    """The exchange with the upstream could not be completed."""

    def __init__(self, code: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def set_upstream_client(client: httpx.AsyncClient | None) -> None:
    global _client
    _client = client


def get_upstream_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = httpx.AsyncClient(timeout=httpx.Timeout(settings.upstream_timeout_ms / 1000.0))
    return _client


async def close_upstream_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def upstream_url(path: str, query: str | None = None) -> str:
    url = f"{get_settings().upstream_base}{path}"
    if query:
        url = f"{url}?{query}"
    return url


async def forward(method: str, path: str, body: bytes, query: str | None = None) -> UpstreamResponse:
    """Relay one request to the upstream.

    Any HTTP status the upstream answers with is a successful relay. Only
    transport failures raise, as ``UpstreamTransportError``.
    """

    url = upstream_url(path, query)
    client = get_upstream_client()
    logger.debug("upstream.request", url=url, body_size=len(body))

    try:
        resp = await client.request(
            method,
            url,
            headers={"Content-Type": "application/json"},
            content=body,
        )
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        message = str(exc) or exc.__class__.__name__
        raise UpstreamTransportError(code=exc.__class__.__name__, message=message) from exc

    headers = [(k, v) for k, v in resp.headers.multi_items() if k.lower() not in _DROPPED_RESPONSE_HEADERS]
    return UpstreamResponse(status_code=resp.status_code, headers=headers, content=resp.content)


async def probe_upstream() -> bool:
    """Check whether the upstream answers at all (any status counts)."""

    url = upstream_url("/api/tags")
    try:
        await get_upstream_client().get(url, timeout=5.0)
    except httpx.HTTPError as exc:
        logger.warning("upstream.unreachable", url=url, error=str(exc) or exc.__class__.__name__)
        return False
    logger.info("upstream.reachable", url=url)
    return True
