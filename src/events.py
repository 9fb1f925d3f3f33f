"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

- 全局 bus: 进程内的旁路事件（提醒触发、用户响应），供指标统计等订阅；
- ReminderManager 另持有一个私有 Bus 实例，用于变更通知 (on_change)。

任何处理器抛出的异常都会经由 pyee 的 "error" 事件记录日志，不会影响其他处理器。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Awaitable, Callable, Union

from logger import logger

Handler = Callable[..., Union[Awaitable[None], None]]

# 事件名集中定义
class E:
    REMINDERS_CHANGED = "reminders.changed"
    REMINDER_TRIGGERED = "reminder.triggered"
    REMINDER_RESPONDED = "reminder.responded"


class Disposable:
    """调用 dispose() 即注销，重复调用无副作用"""

    def __init__(self, on_dispose: Callable[[], None]) -> None:
        self._on_dispose: Callable[[], None] | None = on_dispose

    @property
    def disposed(self) -> bool:
        return self._on_dispose is None

    def dispose(self) -> None:
        if self._on_dispose is None:
            return
        on_dispose, self._on_dispose = self._on_dispose, None
        on_dispose()


class Bus(AsyncIOEventEmitter):
    def __init__(self, name: str = "bus") -> None:
        super().__init__()
        self.name = name
        self.add_listener("error", self._log_handler_error)

    def _log_handler_error(self, exc: BaseException) -> None:
        logger.opt(exception=exc).error(f"事件处理器执行失败 ({self.name}): {exc!r}")

    def on(self, event: str) -> Callable[[Handler], Handler]:
        """注册事件处理器装饰器"""
        def decorator(handler: Handler) -> Handler:
            logger.debug(f"注册事件处理器: {event} -> {getattr(handler, '__name__', handler)!r}")
            self.add_listener(event, handler)
            return handler

        return decorator

    def subscribe(self, event: str, handler: Handler) -> Disposable:
        """注册处理器并返回可注销的句柄"""
        self.add_listener(event, handler)

        def _remove() -> None:
            try:
                self.remove_listener(event, handler)
            except KeyError:
                pass

        return Disposable(_remove)

    def handler_count(self, event: str) -> int:
        return len(self.listeners(event))


bus = Bus()

__all__ = ["bus", "Bus", "E", "Disposable"]
