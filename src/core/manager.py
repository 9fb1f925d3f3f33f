"""提醒管理器

ReminderManager 是提醒集合唯一的修改者。每个公开操作都按同一顺序执行：
1. 修改实体（状态转换）;
2. 更新调度器（重新布置或取消定时器）;
3. 持久化（失败只记日志，内存状态仍以当前进程为准）;
4. 通知变更监听者。

操作通过返回值表示成功与否，不向调用方抛异常。

# 触发处理
调度器到期后调用 _handle_trigger：通过通知通道展示提醒，并在固定超时内等待用户选择。
- Snooze  -> snooze(id, 5)
- Pause   -> pause(id)
- Dismiss / 超时 / 未选择 / 通道故障 -> dismiss(id)
等待期间提醒被删除则丢弃结果；等待期间提醒被用户改动且结果是超时，则不再默认 dismiss。

# 启动时对账
从存储加载记录（兼容旧的 isActive/isSnoozed 格式），未 snooze 且已过期的提醒顺延一个间隔，
snooze 且已过期的提醒交给调度器立即触发，最后把（可能已迁移的）全部记录写回存储。
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from channels.base import Notifier, NullNotifier, present_and_await
from clock import ClockService, system_clock
from config.settings import NOTIFICATION_TIMEOUT_SECONDS
from datamodel import AddResult, Choice, NotificationOption, ReminderStats
from events import E, Bus, Disposable, bus
from logger import logger
from metrics import runtime_metrics
from storage.reminder import ReminderStore
from world.reminder import DEFAULT_SNOOZE_MINUTES, Reminder
from world.scheduler import ReminderScheduler

__all__ = ["ReminderManager", "ChangeListener"]

ChangeListener = Callable[[], Any]


class ReminderManager:
    def __init__(
        self,
        store: ReminderStore,
        notifier: Notifier | None = None,
        *,
        clock: ClockService | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        notification_timeout_seconds: float = NOTIFICATION_TIMEOUT_SECONDS,
        autoload: bool = True,
    ) -> None:
        self._store = store
        self._notifier = notifier or NullNotifier()
        self._clock = clock or system_clock
        self._notification_timeout_seconds = notification_timeout_seconds

        self._reminders: dict[str, Reminder] = {}
        self._prompting: set[str] = set()
        self._changes = Bus(name="reminder-manager")
        self._scheduler = ReminderScheduler(self._handle_trigger, clock=self._clock, loop=loop)

        if autoload:
            self.load()

    @property
    def scheduler(self) -> ReminderScheduler:
        return self._scheduler

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def now_ms(self) -> int:
        return self._clock.now_ms()

    # ----------------- 增删查 ----------------
    def add(self, text: str, interval_minutes: float) -> AddResult:
        try:
            interval = float(interval_minutes)
        except (TypeError, ValueError):
            interval = float("nan")

        now = self._clock.now_ms()
        reminder = Reminder.create(text, interval, now=now)

        issue = reminder.validate()
        if issue is not None:
            logger.warning(f"拒绝创建提醒: {issue.message} (text={text!r}, interval={interval_minutes!r})")
            return AddResult(success=False, error=issue.message)

        # 确保一定有下次触发时间
        reminder.reschedule(now)

        self._reminders[reminder.id] = reminder
        self._scheduler.schedule(reminder)
        self._save()
        self._notify_change()

        logger.info(f"创建提醒: id={reminder.id}, text={reminder.text!r}, interval={reminder.interval_minutes}min")
        return AddResult(success=True, reminder=reminder)

    def get(self, reminder_id: str) -> Reminder | None:
        return self._reminders.get(reminder_id)

    def get_all(self) -> list[Reminder]:
        return list(self._reminders.values())

    def delete(self, reminder_id: str) -> bool:
        reminder = self._require(reminder_id, "delete")
        if reminder is None:
            return False

        # 先取消定时器再移除，避免悬空定时器
        self._scheduler.cancel(reminder_id)
        del self._reminders[reminder_id]
        self._save()
        self._notify_change()
        logger.info(f"删除提醒: id={reminder_id}")
        return True

    # ----------------- 状态转换 ----------------
    def toggle(self, reminder_id: str) -> bool:
        reminder = self._require(reminder_id, "toggle")
        if reminder is None:
            return False

        if reminder.is_paused:
            reminder.resume(self._clock.now_ms())
            self._scheduler.schedule(reminder)
        else:
            reminder.pause()
            self._scheduler.cancel(reminder_id)

        self._save()
        self._notify_change()
        logger.info(f"切换提醒: id={reminder_id}, state={reminder.state.value}")
        return True

    def resume(self, reminder_id: str) -> bool:
        reminder = self._require(reminder_id, "resume")
        if reminder is None:
            return False

        reminder.resume(self._clock.now_ms())
        self._scheduler.reschedule(reminder)
        self._save()
        self._notify_change()
        return True

    def snooze(self, reminder_id: str, minutes: float = DEFAULT_SNOOZE_MINUTES) -> bool:
        reminder = self._require(reminder_id, "snooze")
        if reminder is None:
            return False
        if not isinstance(minutes, (int, float)) or isinstance(minutes, bool) or minutes <= 0:
            logger.warning(f"snooze 时长非法: id={reminder_id}, minutes={minutes!r}")
            return False

        reminder.snooze(minutes, now=self._clock.now_ms())
        self._scheduler.reschedule(reminder)
        self._save()
        self._notify_change()
        logger.info(f"推迟提醒: id={reminder_id}, minutes={minutes}")
        return True

    def dismiss(self, reminder_id: str) -> bool:
        reminder = self._require(reminder_id, "dismiss")
        if reminder is None:
            return False

        reminder.dismiss(self._clock.now_ms())
        self._scheduler.reschedule(reminder)
        self._save()
        self._notify_change()
        logger.info(f"忽略提醒: id={reminder_id}, 下次触发于 {reminder.interval_minutes}min 后")
        return True

    def pause(self, reminder_id: str) -> bool:
        reminder = self._require(reminder_id, "pause")
        if reminder is None:
            return False

        reminder.pause()
        self._scheduler.cancel(reminder_id)
        self._save()
        self._notify_change()
        logger.info(f"暂停提醒: id={reminder_id}")
        return True

    # ----------------- 变更通知 ----------------
    def on_change(self, listener: ChangeListener) -> Disposable:
        return self._changes.subscribe(E.REMINDERS_CHANGED, listener)

    def _notify_change(self) -> None:
        self._changes.emit(E.REMINDERS_CHANGED)

    # ----------------- 统计 ----------------
    def get_stats(self) -> ReminderStats:
        active = paused = snoozed = 0
        for reminder in self._reminders.values():
            if reminder.is_paused:
                paused += 1
            elif reminder.is_snoozed:
                snoozed += 1
            elif reminder.is_active:
                active += 1

        return ReminderStats(total=len(self._reminders), active=active, paused=paused, snoozed=snoozed)

    # ----------------- 持久化 ----------------
    def load(self) -> None:
        try:
            saved = self._store.load()
        except Exception as e:
            logger.opt(exception=e).error(f"读取已保存的提醒失败: {e}")
            return

        if not saved:
            logger.info("没有已保存的提醒")
            return

        logger.info(f"正在加载 {len(saved)} 条已保存的提醒...")
        now = self._clock.now_ms()
        for record in saved:
            try:
                reminder = Reminder.from_record(record, now=now)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"无法加载提醒记录, 已跳过: {e}")
                continue

            issue = reminder.validate()
            if issue is not None:
                logger.error(f"提醒记录校验失败, 已跳过: id={reminder.id}, reason={issue.message}")
                continue
            if reminder.id in self._reminders:
                logger.warning(f"提醒 id 重复, 已跳过后出现的记录: id={reminder.id}")
                continue

            self._reminders[reminder.id] = reminder

            if reminder.is_active:
                # 已过期的 snoozed 提醒保持原时间，由调度器立即触发
                if reminder.next_trigger_time is not None and reminder.next_trigger_time <= now:
                    if not reminder.is_snoozed:
                        reminder.reschedule(now)
                self._scheduler.schedule(reminder)

        self._save()
        logger.info(f"已加载 {len(self._reminders)} 条提醒")

    def _save(self) -> None:
        records = [r.to_record() for r in self._reminders.values()]
        try:
            self._store.save(records)
        except Exception as e:
            runtime_metrics.record_save_error()
            logger.opt(exception=e).error(f"保存提醒失败: {e}")

    def _require(self, reminder_id: str, action: str) -> Reminder | None:
        reminder = self._reminders.get(reminder_id)
        if reminder is None:
            logger.warning(f"{action}: 提醒不存在 id={reminder_id}")
        return reminder

    # ----------------- 触发处理 ----------------
    async def _handle_trigger(self, reminder: Reminder) -> None:
        reminder_id = reminder.id
        if self._reminders.get(reminder_id) is not reminder:
            logger.debug(f"提醒 {reminder_id} 已被删除，忽略本次触发")
            return
        if reminder_id in self._prompting:
            runtime_metrics.record_duplicate_trigger()
            logger.warning(f"提醒 {reminder_id} 仍在等待用户响应，忽略重复触发")
            return

        logger.info(f"触发提醒: id={reminder_id}, text={reminder.text!r}")
        bus.emit(E.REMINDER_TRIGGERED, reminder)
        before = (reminder.state, reminder.next_trigger_time)

        self._prompting.add(reminder_id)
        try:
            result = await present_and_await(
                self._notifier,
                f"Reminder: {reminder.text}",
                NotificationOption.ALL,
                self._notification_timeout_seconds,
            )
        finally:
            self._prompting.discard(reminder_id)

        if self._reminders.get(reminder_id) is not reminder:
            logger.info(f"提醒 {reminder_id} 在等待响应期间被删除，丢弃响应")
            return

        if isinstance(result, Choice):
            outcome = result.label
            if result.label == NotificationOption.SNOOZE:
                self.snooze(reminder_id, DEFAULT_SNOOZE_MINUTES)
            elif result.label == NotificationOption.PAUSE:
                self.pause(reminder_id)
            else:
                self.dismiss(reminder_id)
        else:
            outcome = result.reason
            if (reminder.state, reminder.next_trigger_time) != before:
                logger.info(f"提醒 {reminder_id} 在等待响应期间已被修改，不再默认忽略")
                if reminder.is_active and not self._scheduler.is_scheduled(reminder_id):
                    # 等待期间到期的重复触发已被丢弃，这里补上
                    self._scheduler.schedule(reminder)
                bus.emit(E.REMINDER_RESPONDED, reminder, f"{outcome}_superseded")
                return
            self.dismiss(reminder_id)

        logger.debug(f"提醒 {reminder_id} 的响应: {outcome}")
        bus.emit(E.REMINDER_RESPONDED, reminder, outcome)

    # ----------------- 生命周期 ----------------
    def dispose(self) -> None:
        self._scheduler.dispose()
        self._changes.remove_all_listeners(E.REMINDERS_CHANGED)
        logger.info("ReminderManager 已释放")

    async def shutdown(self) -> None:
        self.dispose()
        await self._scheduler.join()


@bus.on(E.REMINDER_TRIGGERED)
def count_triggered(reminder: Reminder) -> None:
    runtime_metrics.record_trigger()


@bus.on(E.REMINDER_RESPONDED)
def count_outcome(reminder: Reminder, outcome: str) -> None:
    runtime_metrics.record_outcome(outcome)
    if outcome == "error":
        runtime_metrics.record_notification_error()
