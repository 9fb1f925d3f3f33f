from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, TypedDict, Union

__all__ = [
    "ReminderRecord", "LegacyReminderRecord",
    "AddResult", "ReminderStats",
    "Choice", "TimedOut", "NotificationResult",
    "NotificationOption",
]


# ----------------- 持久化记录 ----------------
class ReminderRecord(TypedDict):
    id: str
    text: str
    intervalMinutes: float
    state: str  # 'active', 'paused', 'snoozed'
    nextTriggerTime: Optional[int]  # epoch 毫秒; paused 时为 None
    createdAt: int  # epoch 毫秒


class LegacyReminderRecord(TypedDict, total=False):
    id: str
    text: str
    intervalMinutes: float
    isActive: bool
    isSnoozed: bool
    nextTriggerTime: Optional[int]
    createdAt: int


# ----------------- Manager 返回值 ----------------
@dataclass
class AddResult:
    success: bool
    error: Optional[str] = None
    reminder: Any = None  # world.reminder.Reminder


@dataclass(frozen=True)
class ReminderStats:
    total: int = 0
    active: int = 0
    paused: int = 0
    snoozed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "active": self.active,
            "paused": self.paused,
            "snoozed": self.snoozed,
        }


# ----------------- 通知结果 ----------------
class NotificationOption:
    DISMISS = "Dismiss"
    PAUSE = "Pause"
    SNOOZE = "Snooze (5 min)"

    ALL = (DISMISS, PAUSE, SNOOZE)


@dataclass(frozen=True)
class Choice:
    label: str


@dataclass(frozen=True)
class TimedOut:
    """用户在限定时间内没有选择（超时、关闭通知或通知通道故障）"""
    reason: str = "timeout"


NotificationResult = Union[Choice, TimedOut]
