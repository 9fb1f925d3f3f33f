"""
提醒调度器: reminder id -> asyncio 定时器句柄。

保证:
    - 每个 id 最多一个未触发的定时器（schedule 总是先 cancel 再布置）；
    - 触发时间已过的提醒在 schedule 调用内同步触发，不创建定时器；
    - 定时器到期时先删除自身的登记，再调用回调；
    - 回调抛出的异常（同步或协程）只记录日志，不会传出触发路径。
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Union

from clock import ClockService, system_clock
from logger import logger
from world.reminder import Reminder

__all__ = ["ReminderScheduler", "TriggerCallback"]

TriggerCallback = Callable[[Reminder], Union[Awaitable[None], None]]


class ReminderScheduler:
    def __init__(
        self,
        on_trigger: TriggerCallback,
        *,
        clock: ClockService | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._on_trigger = on_trigger
        self._clock = clock or system_clock
        self._loop = loop
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._inflight: set[asyncio.Future] = set()
        self._disposed = False

    @property
    def active_timer_count(self) -> int:
        return len(self._timers)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def is_scheduled(self, reminder_id: str) -> bool:
        return reminder_id in self._timers

    def pending_ids(self) -> list[str]:
        return list(self._timers)

    def schedule(self, reminder: Reminder) -> None:
        """按提醒的 next_trigger_time 布置定时器"""
        self.cancel(reminder.id)

        if self._disposed:
            logger.warning(f"调度器已释放，忽略提醒 {reminder.id} 的调度请求")
            return

        if not reminder.is_active:
            logger.trace(f"提醒 {reminder.id} 未激活，跳过调度")
            return

        delay_ms = reminder.time_until_trigger(self._clock.now_ms())
        if delay_ms is None:
            logger.trace(f"提醒 {reminder.id} 没有下次触发时间，跳过调度")
            return

        if delay_ms <= 0:
            logger.debug(f"提醒 {reminder.id} 的触发时间已过，立即触发")
            self._fire(reminder)
            return

        loop = self._loop or asyncio.get_running_loop()
        self._timers[reminder.id] = loop.call_later(delay_ms / 1000, self._on_timer, reminder)
        logger.debug(f"已调度提醒 {reminder.id}, {delay_ms} ms 后触发")

    def cancel(self, reminder_id: str) -> None:
        timer = self._timers.pop(reminder_id, None)
        if timer is not None:
            timer.cancel()
            logger.trace(f"已取消提醒 {reminder_id} 的定时器")

    def reschedule(self, reminder: Reminder) -> None:
        self.cancel(reminder.id)
        self.schedule(reminder)

    def cancel_all(self) -> None:
        for reminder_id, timer in self._timers.items():
            timer.cancel()
            logger.trace(f"已取消提醒 {reminder_id} 的定时器")
        self._timers.clear()

    def dispose(self) -> None:
        """释放全部定时器及正在执行的触发回调，之后不再接受调度"""
        self._disposed = True
        self.cancel_all()
        for fut in list(self._inflight):
            fut.cancel()
        logger.debug("提醒调度器已释放")

    async def join(self) -> None:
        """等待所有正在执行的触发回调结束"""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _on_timer(self, reminder: Reminder) -> None:
        logger.trace(f"提醒 {reminder.id} 的定时器到期")
        self._fire(reminder)

    def _fire(self, reminder: Reminder) -> None:
        self._timers.pop(reminder.id, None)
        try:
            result: Any = self._on_trigger(reminder)
        except Exception as e:
            logger.opt(exception=e).error(f"触发提醒 {reminder.id} 时回调出错: {e}")
            return

        if not inspect.isawaitable(result):
            return

        try:
            fut = asyncio.ensure_future(result)
        except RuntimeError as e:
            if inspect.iscoroutine(result):
                result.close()
            logger.error(f"提醒 {reminder.id} 的触发回调无法执行 (没有运行中的事件循环): {e}")
            return
        self._inflight.add(fut)
        fut.add_done_callback(lambda f, rid=reminder.id: self._on_trigger_done(rid, f))

    def _on_trigger_done(self, reminder_id: str, fut: asyncio.Future) -> None:
        self._inflight.discard(fut)
        if fut.cancelled():
            logger.debug(f"提醒 {reminder_id} 的触发处理已取消")
            return
        exc = fut.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"触发提醒 {reminder_id} 时回调出错: {exc}")
