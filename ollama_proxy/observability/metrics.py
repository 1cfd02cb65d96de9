from __future__ import annotations

from threading import Lock


class ConcurrencyGauge:
    """Thread-safe, process-local count of in-flight requests (resets on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._value: int = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            if self._value > 0:
                self._value -= 1
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = 0


_GAUGE: ConcurrencyGauge | None = None


def get_gauge() -> ConcurrencyGauge:
    global _GAUGE
    if _GAUGE is None:
        _GAUGE = ConcurrencyGauge()
    return _GAUGE


def reset_gauge() -> None:
    """Zero the in-flight counter (used by tests)."""

    get_gauge().reset()
