"""
提醒实体: 单个提醒的状态机与校验。

状态:
    active  -- 正常按间隔触发
    snoozed -- 临时推迟一次（推迟结束后触发，响应后回到 active）
    paused  -- 不触发，next_trigger_time 为 None

注意: 时间一律为 epoch 毫秒。涉及“现在”的方法都接受可选的 now 参数，默认取系统时间。
实体本身不知道定时器和存储的存在。
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Mapping

from ulid import ULID

from datamodel import LegacyReminderRecord, ReminderRecord
from utils import minutes_to_ms, now_ms

__all__ = ["Reminder", "ReminderState", "ValidationIssue", "DEFAULT_SNOOZE_MINUTES"]

DEFAULT_SNOOZE_MINUTES = 5


class ReminderState(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    SNOOZED = "snoozed"


class ValidationIssue(str, Enum):
    NON_POSITIVE_INTERVAL = "non_positive_interval"
    EMPTY_TEXT = "empty_text"

    @property
    def message(self) -> str:
        if self is ValidationIssue.NON_POSITIVE_INTERVAL:
            return "Interval must be greater than zero."
        return "Reminder text cannot be empty."


def _is_legacy_record(record: Mapping[str, Any]) -> bool:
    return "isActive" in record or "isSnoozed" in record


def _legacy_state(record: LegacyReminderRecord) -> ReminderState:
    if record.get("isSnoozed"):
        return ReminderState.SNOOZED
    if record.get("isActive"):
        return ReminderState.ACTIVE
    return ReminderState.PAUSED


def _epoch_ms_field(record: Mapping[str, Any], key: str, reminder_id: str) -> int | None:
    value = record.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"提醒记录 {key} 非法: id={reminder_id}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"提醒记录 {key} 非法: id={reminder_id}") from e
    if not math.isfinite(number):
        raise ValueError(f"提醒记录 {key} 非法: id={reminder_id}")
    return value if isinstance(value, int) else int(number)


class Reminder:
    def __init__(
        self,
        *,
        id: str,
        text: str,
        interval_minutes: float,
        state: ReminderState = ReminderState.ACTIVE,
        next_trigger_time: int | None = None,
        created_at: int | None = None,
    ) -> None:
        self._id = id
        self._text = text
        self._interval_minutes = interval_minutes
        self._state = ReminderState(state)
        self._next_trigger_time = next_trigger_time
        self._created_at = created_at if created_at is not None else now_ms()

    @classmethod
    def create(cls, text: str, interval_minutes: float, now: int | None = None) -> "Reminder":
        """新建一个 active 提醒，尚未校验"""
        now = now_ms() if now is None else now
        valid_interval = (
            isinstance(interval_minutes, (int, float)) and math.isfinite(interval_minutes) and interval_minutes > 0
        )
        return cls(
            id=str(ULID()),
            text=text,
            interval_minutes=interval_minutes,
            state=ReminderState.ACTIVE,
            # 非法间隔的实体不会进入集合，这里只需保证不抛异常
            next_trigger_time=now + minutes_to_ms(interval_minutes) if valid_interval else now,
            created_at=now,
        )

    # ----------------- 只读属性 ----------------
    @property
    def id(self) -> str:
        return self._id

    @property
    def text(self) -> str:
        return self._text

    @property
    def interval_minutes(self) -> float:
        return self._interval_minutes

    @property
    def state(self) -> ReminderState:
        return self._state

    @property
    def next_trigger_time(self) -> int | None:
        return self._next_trigger_time

    @property
    def created_at(self) -> int:
        return self._created_at

    @property
    def is_active(self) -> bool:
        return self._state in (ReminderState.ACTIVE, ReminderState.SNOOZED)

    @property
    def is_paused(self) -> bool:
        return self._state is ReminderState.PAUSED

    @property
    def is_snoozed(self) -> bool:
        return self._state is ReminderState.SNOOZED

    def time_until_trigger(self, now: int | None = None) -> int | None:
        if self._next_trigger_time is None:
            return None
        now = now_ms() if now is None else now
        return max(0, self._next_trigger_time - now)

    # ----------------- 状态转换 ----------------
    def pause(self) -> None:
        if self._state is ReminderState.PAUSED:
            return
        self._state = ReminderState.PAUSED
        self._next_trigger_time = None

    def resume(self, now: int | None = None) -> None:
        if self._state is not ReminderState.PAUSED:
            return
        self._state = ReminderState.ACTIVE
        self._next_trigger_time = self._next_after_interval(now)

    def snooze(self, minutes: float = DEFAULT_SNOOZE_MINUTES, now: int | None = None) -> None:
        # 任何状态都可以 snooze，包括 paused（会重新激活）
        now = now_ms() if now is None else now
        self._state = ReminderState.SNOOZED
        self._next_trigger_time = now + minutes_to_ms(minutes)

    def dismiss(self, now: int | None = None) -> None:
        self._state = ReminderState.ACTIVE
        self._next_trigger_time = self._next_after_interval(now)

    def reschedule(self, now: int | None = None) -> None:
        """错过触发时使用: 保持状态不变，只把触发时间顺延一个间隔"""
        if self.is_active:
            self._next_trigger_time = self._next_after_interval(now)

    def _next_after_interval(self, now: int | None) -> int:
        now = now_ms() if now is None else now
        return now + minutes_to_ms(self._interval_minutes)

    # ----------------- 校验 ----------------
    def validate(self) -> ValidationIssue | None:
        interval = self._interval_minutes
        if (
            isinstance(interval, bool)
            or not isinstance(interval, (int, float))
            or not math.isfinite(interval)
            or interval <= 0
        ):
            return ValidationIssue.NON_POSITIVE_INTERVAL

        if not isinstance(self._text, str) or self._text.strip() == "":
            return ValidationIssue.EMPTY_TEXT
        return None

    # ----------------- 序列化 ----------------
    def to_record(self) -> ReminderRecord:
        return {
            "id": self._id,
            "text": self._text,
            "intervalMinutes": self._interval_minutes,
            "state": self._state.value,
            "nextTriggerTime": self._next_trigger_time,
            "createdAt": self._created_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any], now: int | None = None) -> "Reminder":
        """
        从持久化记录重建实体，兼容旧格式 {isActive, isSnoozed}。

        Raises:
            ValueError: 记录缺少必需字段或字段非法。
        """
        now = now_ms() if now is None else now

        reminder_id = record.get("id")
        text = record.get("text")
        if not isinstance(reminder_id, str) or reminder_id == "":
            raise ValueError(f"提醒记录缺少 id: {record!r}")
        if not isinstance(text, str):
            raise ValueError(f"提醒记录缺少 text: id={reminder_id}")

        try:
            interval_minutes = float(record["intervalMinutes"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"提醒记录 intervalMinutes 非法: id={reminder_id}") from e
        if not math.isfinite(interval_minutes):
            raise ValueError(f"提醒记录 intervalMinutes 非法: id={reminder_id}")

        if _is_legacy_record(record):
            state = _legacy_state(record)
        else:
            state = ReminderState(record.get("state", ReminderState.ACTIVE.value))

        if state is ReminderState.PAUSED:
            next_trigger_time = None
        else:
            next_trigger_time = _epoch_ms_field(record, "nextTriggerTime", reminder_id)
            if next_trigger_time is None:
                next_trigger_time = now + minutes_to_ms(interval_minutes)

        created_at = _epoch_ms_field(record, "createdAt", reminder_id)
        return cls(
            id=reminder_id,
            text=text,
            interval_minutes=interval_minutes,
            state=state,
            next_trigger_time=next_trigger_time,
            created_at=created_at if created_at is not None else now,
        )

    # ----------------- 其他 ----------------
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Reminder):
            return NotImplemented
        return self.to_record() == other.to_record()

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"Reminder(id={self._id!r}, text={self._text!r}, interval_minutes={self._interval_minutes!r}, "
            f"state={self._state.value!r}, next_trigger_time={self._next_trigger_time!r})"
        )
