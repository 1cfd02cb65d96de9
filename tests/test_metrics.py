import asyncio
import random

import psutil

from ollama_proxy.observability import system
from ollama_proxy.observability.metrics import ConcurrencyGauge, get_gauge, reset_gauge
from ollama_proxy.observability.system import sample_system_load


def test_gauge_counts_up_and_down_and_never_goes_negative() -> None:
    gauge = ConcurrencyGauge()
    assert gauge.increment() == 1
    assert gauge.increment() == 2
    assert gauge.decrement() == 1
    assert gauge.decrement() == 0
    assert gauge.decrement() == 0
    assert gauge.value == 0


def test_reset_gauge_zeroes_the_process_gauge() -> None:
    get_gauge().increment()
    reset_gauge()
    assert get_gauge().value == 0


async def test_gauge_returns_to_zero_for_any_interleaving() -> None:
    gauge = ConcurrencyGauge()
    peak = 0

    async def _request() -> None:
        nonlocal peak
        peak = max(peak, gauge.increment())
        await asyncio.sleep(random.random() / 100)
        gauge.decrement()

    await asyncio.gather(*(_request() for _ in range(50)))

    assert gauge.value == 0
    assert peak > 1


def test_system_load_sample_is_in_range() -> None:
    sample = sample_system_load()
    assert sample.cpu_user >= 0
    assert 0 <= sample.memory_percent <= 100


def test_system_load_sample_never_raises(monkeypatch) -> None:
    def _boom(*args, **kwargs):
        raise psutil.AccessDenied()

    monkeypatch.setattr(system.psutil, "virtual_memory", _boom)
    monkeypatch.setattr(system.psutil, "Process", _boom)

    sample = sample_system_load()
    assert sample.cpu_user == 0
    assert sample.memory_percent == 0
