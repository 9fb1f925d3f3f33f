"""提醒列表视图的消息边界

入站: addReminder{text, intervalMinutes} / toggleReminder{id} / deleteReminder{id} / getReminders{}
出站: updateReminders{reminders, stats}，每次变更后以及 attach 时各发送一次；
      error{message}，用于提示校验失败或提醒不存在。
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Union

from core.manager import ReminderManager
from events import Disposable
from logger import logger
from world.reminder import Reminder

__all__ = ["RemindersViewProvider", "PostMessage", "reminder_view"]

PostMessage = Callable[[dict[str, Any]], Union[Awaitable[None], None]]


def reminder_view(reminder: Reminder, now: int) -> dict[str, Any]:
    return {
        **reminder.to_record(),
        "isActive": reminder.is_active,
        "isPaused": reminder.is_paused,
        "isSnoozed": reminder.is_snoozed,
        "timeUntilTrigger": reminder.time_until_trigger(now),
    }


class RemindersViewProvider:
    def __init__(self, manager: ReminderManager, post_message: PostMessage) -> None:
        self._manager = manager
        self._post_message = post_message
        self._subscription: Disposable | None = None
        self._pending: set[asyncio.Future] = set()

    @property
    def attached(self) -> bool:
        return self._subscription is not None

    def attach(self) -> None:
        if self._subscription is None:
            self._subscription = self._manager.on_change(self.update_view)
        self.update_view()

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None
        for fut in list(self._pending):
            fut.cancel()

    def snapshot(self) -> dict[str, Any]:
        now = self._manager.now_ms()
        return {
            "type": "updateReminders",
            "reminders": [reminder_view(r, now) for r in self._manager.get_all()],
            "stats": self._manager.get_stats().to_dict(),
        }

    def update_view(self) -> None:
        message = self.snapshot()
        logger.trace(f"更新视图: {len(message['reminders'])} 条提醒")
        self._post(message)

    def handle_message(self, data: Any) -> None:
        if not isinstance(data, dict):
            logger.warning(f"视图消息格式非法, 已忽略: {data!r}")
            return

        msg_type = data.get("type")
        if msg_type == "addReminder":
            result = self._manager.add(data.get("text", ""), data.get("intervalMinutes"))
            if not result.success:
                self._post_error(result.error or "Failed to add reminder.")
        elif msg_type == "toggleReminder":
            if not self._manager.toggle(str(data.get("id", ""))):
                self._post_error("Reminder not found.")
        elif msg_type == "deleteReminder":
            if not self._manager.delete(str(data.get("id", ""))):
                self._post_error("Reminder not found.")
        elif msg_type == "getReminders":
            self.update_view()
        else:
            logger.warning(f"未知的视图消息类型: {msg_type!r}")

    def _post_error(self, message: str) -> None:
        self._post({"type": "error", "message": message})

    def _post(self, message: dict[str, Any]) -> None:
        try:
            result = self._post_message(message)
        except Exception as e:
            logger.opt(exception=e).error(f"向视图发送消息失败: {e}")
            return

        if inspect.isawaitable(result):
            fut = asyncio.ensure_future(result)
            self._pending.add(fut)
            fut.add_done_callback(self._on_post_done)

    def _on_post_done(self, fut: asyncio.Future) -> None:
        self._pending.discard(fut)
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            logger.opt(exception=exc).warning(f"向视图发送消息失败: {exc}")
