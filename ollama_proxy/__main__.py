from __future__ import annotations

import argparse

import structlog
import uvicorn

from ollama_proxy.config import get_settings
from ollama_proxy.observability.logging import configure_logging


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Ollama proxy with CSV request auditing")
    parser.add_argument("--host", default=settings.host, help="Interface to bind (HOST)")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on (PORT)")
    parser.add_argument("--log-level", default=settings.log_level, help="Log level (LOG_LEVEL)")
    args = parser.parse_args()

    settings.log_level = args.log_level
    configure_logging(
        level=settings.logging_level,
        log_dir=settings.log_dir if settings.log_file_enabled else None,
    )
    structlog.get_logger("proxy").info(
        "proxy.starting",
        listen=f"http://{args.host}:{args.port}",
        upstream=settings.upstream_base,
        audit_file=str(settings.audit_file),
    )

    uvicorn.run("ollama_proxy.main:app", host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
