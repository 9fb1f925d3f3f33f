"""
一个简单的运行时指标收集类，用于统计提醒触发次数、用户响应分布、持久化失败等信息。
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class RuntimeMetrics:
    trigger_count: int = 0
    duplicate_trigger_count: int = 0
    outcome_counts: dict[str, int] = field(default_factory=dict)
    notification_error_count: int = 0
    save_error_count: int = 0
    last_trigger_at: float | None = None

    def record_trigger(self) -> None:
        self.trigger_count += 1
        self.last_trigger_at = time.time()

    def record_duplicate_trigger(self) -> None:
        self.duplicate_trigger_count += 1

    def record_outcome(self, outcome: str) -> None:
        self.outcome_counts[outcome] = self.outcome_counts.get(outcome, 0) + 1

    def record_notification_error(self) -> None:
        self.notification_error_count += 1

    def record_save_error(self) -> None:
        self.save_error_count += 1

    def reset(self) -> None:
        self.trigger_count = 0
        self.duplicate_trigger_count = 0
        self.outcome_counts = {}
        self.notification_error_count = 0
        self.save_error_count = 0
        self.last_trigger_at = None

    def snapshot(self) -> dict:
        return {
            "trigger_count": self.trigger_count,
            "duplicate_trigger_count": self.duplicate_trigger_count,
            "outcome_counts": dict(self.outcome_counts),
            "notification_error_count": self.notification_error_count,
            "save_error_count": self.save_error_count,
            "last_trigger_at_epoch": self.last_trigger_at,
            "last_trigger_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_trigger_at))
                if self.last_trigger_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
