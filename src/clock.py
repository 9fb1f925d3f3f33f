"""
时钟服务。

目的:
    - 提醒的触发时间全部以 epoch 毫秒计算，统一从这里取“现在”。
    - 支持在不等待真实时间的情况下前进（测试与诊断用途）。
"""

from __future__ import annotations

from dataclasses import dataclass

from utils import now_ms


@dataclass(frozen=True)
class ClockSnapshot:
    """时钟状态的只读快照。"""

    system_now_ms: int
    now_ms: int
    offset_ms: int


class ClockService:
    """
    可前进的时钟。

    方针:
        - system 时间: time.time()。
        - 对外时间: system 时间 + offset 毫秒。
        - 单线程事件循环内使用，不加锁。
    """

    def __init__(self, offset_ms: int = 0) -> None:
        self._offset_ms = int(offset_ms)

    def now_ms(self) -> int:
        return now_ms() + self._offset_ms

    def advance(self, *, seconds: float) -> int:
        """
        前进指定秒数。

        Returns:
            变更后的 offset 毫秒。
        """

        delta = int(round(seconds * 1000))
        if delta <= 0:
            raise ValueError("seconds must be > 0")
        self._offset_ms += delta
        return self._offset_ms

    def reset(self) -> None:
        self._offset_ms = 0

    def snapshot(self) -> ClockSnapshot:
        system_now = now_ms()
        return ClockSnapshot(
            system_now_ms=system_now,
            now_ms=system_now + self._offset_ms,
            offset_ms=self._offset_ms,
        )


system_clock = ClockService()

__all__ = ["ClockService", "ClockSnapshot", "system_clock"]
