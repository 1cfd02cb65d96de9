from __future__ import annotations

import csv
import io
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

from ollama_proxy.config import get_settings
from ollama_proxy.models.schemas import AUDIT_COLUMNS, AuditRecord


_NUMERIC_FIELDS = frozenset(
    {
        "input_tokens",
        "output_tokens",
        "total_tokens",
        "request_size_bytes",
        "response_size_bytes",
        "queue_time_ms",
        "processing_time_ms",
        "total_time_ms",
        "system_load_cpu",
        "system_load_memory",
        "concurrent_requests",
    }
)


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def format_value(name: str, value: Any) -> str:
    if value is None:
        if name in _NUMERIC_FIELDS:
            return "0"
        if name == "stream_mode":
            return "false"
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def format_row(record: AuditRecord, timestamp: str) -> str:
    values = [timestamp]
    values.extend(format_value(name, getattr(record, name)) for name in AUDIT_COLUMNS[1:])

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, doublequote=True, lineterminator="\n")
    writer.writerow(values)
    return buffer.getvalue()


class CSVAuditLogger:
    """Append-only CSV sink, one quoted row per proxied request.

    The header is written once, when the file does not exist yet. The writer
    never rewrites or validates an existing header. Every append is flushed
    and fsynced before returning; a lock keeps rows from interleaving.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = Lock()
        self._ready = False

    def ensure_sink(self) -> None:
        with self._lock:
            self._ensure_sink_locked()

    def _ensure_sink_locked(self) -> None:
        if self._ready:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self.path.open("x", encoding="utf-8", newline="") as fh:
                fh.write(",".join(AUDIT_COLUMNS) + "\n")
                fh.flush()
                os.fsync(fh.fileno())
        except FileExistsError:
            pass
        self._ready = True

    def append(self, record: AuditRecord) -> None:
        row = format_row(record, _utc_timestamp())
        with self._lock:
            self._ensure_sink_locked()
            with self.path.open("a", encoding="utf-8", newline="") as fh:
                fh.write(row)
                fh.flush()
                os.fsync(fh.fileno())


_audit_logger: CSVAuditLogger | None = None


def set_audit_logger(audit_logger: CSVAuditLogger | None) -> None:
    global _audit_logger
    _audit_logger = audit_logger


def get_audit_logger() -> CSVAuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = CSVAuditLogger(get_settings().audit_file)
    return _audit_logger
