from __future__ import annotations

import psutil
import structlog

from ollama_proxy.models.schemas import SystemLoadSample


def _process_cpu_user_us() -> int:
    try:
        return int(psutil.Process().cpu_times().user * 1_000_000)
    except (psutil.Error, OSError, AttributeError):
        structlog.get_logger("system").debug("system_load.cpu_unavailable", exc_info=True)
        return 0


def _memory_percent() -> int:
    try:
        mem = psutil.virtual_memory()
        if not mem.total:
            return 0
        return round((mem.total - mem.free) / mem.total * 100)
    except (psutil.Error, OSError, AttributeError):
        structlog.get_logger("system").debug("system_load.memory_unavailable", exc_info=True)
        return 0


def sample_system_load() -> SystemLoadSample:
    """Snapshot process CPU time (microseconds, user) and system memory use (percent).

    Never raises; an unreadable value is reported as 0.
    """

    return SystemLoadSample(cpu_user=_process_cpu_user_us(), memory_percent=_memory_percent())
