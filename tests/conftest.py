from __future__ import annotations

import asyncio
import csv
from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from ollama_proxy.audit.csv_logger import set_audit_logger
from ollama_proxy.config import get_settings
from ollama_proxy.main import app
from ollama_proxy.observability.metrics import reset_gauge
from ollama_proxy.proxy.forwarder import set_upstream_client


UPSTREAM = "http://ollama.test:11434"


class FakeOllama:
    """Scriptable stand-in for the upstream, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.arrived = 0

    def reply(self, method: str, path: str, status_code: int = 200, json_body: object | None = None, **kwargs) -> None:
        if json_body is not None:
            kwargs["json"] = json_body
        self.routes[(method, path)] = httpx.Response(status_code, **kwargs)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.arrived += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        canned = self.routes.get((request.method, request.url.path))
        if canned is None:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(canned.status_code, headers=canned.headers, content=canned.content)


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("OLLAMA_URL", UPSTREAM)
    monkeypatch.setenv("LOG_PATH", str(tmp_path / "logs"))
    monkeypatch.setenv("LOG_FILE_ENABLED", "false")
    get_settings.cache_clear()
    set_audit_logger(None)
    reset_gauge()

    yield

    set_upstream_client(None)
    set_audit_logger(None)
    reset_gauge()
    get_settings.cache_clear()


@pytest.fixture
def fake_ollama() -> FakeOllama:
    fake = FakeOllama()
    set_upstream_client(httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)))
    return fake


@pytest.fixture
def audit_file() -> Path:
    return get_settings().audit_file


@pytest.fixture
def audit_rows(audit_file: Path):
    def _read() -> list[dict[str, str]]:
        with audit_file.open(encoding="utf-8", newline="") as fh:
            return list(csv.DictReader(fh))

    return _read


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
