"""Pytest configuration and fixtures."""

import asyncio
import os
import sys

import pytest

# src/ 是导入根目录
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from channels.base import Notifier
from clock import ClockService
from core.manager import ReminderManager
from metrics import runtime_metrics
from storage.reminder import MemoryReminderStore

START_MS = 1_700_000_000_000


class FakeClock(ClockService):
    """从固定时刻开始，只在 advance() 时前进"""

    def __init__(self, start_ms: int = START_MS) -> None:
        super().__init__()
        self._start_ms = start_ms

    def now_ms(self) -> int:
        return self._start_ms + self._offset_ms


class FakeTimerHandle:
    def __init__(self, when_ms: float, callback, args) -> None:
        self.when_ms = when_ms
        self.callback = callback
        self.args = args
        self.fired = False
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class FakeLoop:
    """只实现 call_later；advance() 前进时钟并执行到期的回调"""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.handles: list[FakeTimerHandle] = []

    def call_later(self, delay, callback, *args):
        handle = FakeTimerHandle(self.clock.now_ms() + delay * 1000, callback, args)
        self.handles.append(handle)
        return handle

    def live_handles(self) -> list[FakeTimerHandle]:
        return [h for h in self.handles if not h.cancelled() and not h.fired]

    def advance(self, seconds: float) -> None:
        self.clock.advance(seconds=seconds)
        now = self.clock.now_ms()
        due = sorted(
            (h for h in self.live_handles() if h.when_ms <= now + 1e-6),
            key=lambda h: h.when_ms,
        )
        for handle in due:
            if handle.cancelled():
                continue
            handle.fired = True
            handle.callback(*handle.args)


HANG = object()


class ScriptedNotifier(Notifier):
    """按顺序返回预设的响应；HANG 表示永不响应，异常实例会被抛出"""

    name = "scripted"

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, tuple]] = []

    async def present(self, message, options):
        self.calls.append((message, tuple(options)))
        response = self.responses.pop(0) if self.responses else None
        if response is HANG:
            await asyncio.Event().wait()
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def reset_metrics():
    runtime_metrics.reset()
    yield
    runtime_metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_loop(clock):
    return FakeLoop(clock)


@pytest.fixture
def store():
    return MemoryReminderStore()


@pytest.fixture
def notifier():
    return ScriptedNotifier()


@pytest.fixture
def make_manager(store, notifier, clock, fake_loop):
    """创建 ReminderManager，默认使用内存存储、假时钟和假事件循环"""
    created: list[ReminderManager] = []

    def _make(**overrides) -> ReminderManager:
        kwargs = dict(
            store=store,
            notifier=notifier,
            clock=clock,
            loop=fake_loop,
            notification_timeout_seconds=0.05,
        )
        kwargs.update(overrides)
        manager = ReminderManager(**kwargs)
        created.append(manager)
        return manager

    yield _make
    for manager in created:
        manager.dispose()
