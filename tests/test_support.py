from unittest.mock import Mock

import pytest

from clock import ClockService
from events import Bus, Disposable
from utils import format_remaining, minutes_to_ms, ms_to_user_local_str, ms_to_utc_str


def test_minutes_to_ms_rounds():
    assert minutes_to_ms(0.5) == 30_000
    assert minutes_to_ms(1 / 3) == 20_000


def test_format_remaining():
    assert format_remaining(None) == "-"
    assert format_remaining(-5) == "0m 0s"
    assert format_remaining(125_400) == "2m 5s"


def test_time_formatting():
    assert ms_to_utc_str(0) == "1970-01-01T00:00:00Z"
    assert ms_to_user_local_str(0, "Asia/Shanghai") == "1970-01-01 08:00:00"


def test_clock_advance():
    clock = ClockService()
    before = clock.now_ms()
    assert clock.advance(seconds=90) == 90_000
    assert clock.now_ms() - before >= 90_000
    assert clock.snapshot().offset_ms == 90_000

    clock.reset()
    assert clock.snapshot().offset_ms == 0

    with pytest.raises(ValueError):
        clock.advance(seconds=0)


def test_disposable_runs_once():
    callback = Mock()
    handle = Disposable(callback)
    handle.dispose()
    handle.dispose()
    callback.assert_called_once_with()
    assert handle.disposed


def test_bus_subscribe_and_error_isolation():
    b = Bus(name="test")
    seen = []

    @b.on("ping")
    def broken(value):
        raise RuntimeError("broken handler")

    handle = b.subscribe("ping", seen.append)
    assert b.handler_count("ping") == 2

    b.emit("ping", 1)
    assert seen == [1]

    handle.dispose()
    b.emit("ping", 2)
    assert seen == [1]
    assert b.handler_count("ping") == 1
