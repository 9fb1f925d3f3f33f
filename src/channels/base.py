import asyncio
from abc import ABC, abstractmethod
from typing import Sequence

from datamodel import Choice, NotificationResult, TimedOut
from logger import logger

__all__ = ["Notifier", "NullNotifier", "present_and_await"]


class Notifier(ABC):
    """宿主通知能力: 展示一条消息和若干选项，返回用户选择的选项文本"""

    name: str = "notifier"

    @abstractmethod
    async def present(self, message: str, options: Sequence[str]) -> str | None:
        """用户未选择（关闭通知等）时返回 None"""
        pass


class NullNotifier(Notifier):
    """没有可用通道时使用，只写日志"""

    name = "null"

    async def present(self, message: str, options: Sequence[str]) -> str | None:
        logger.info(f"[通知] {message}")
        return None


async def present_and_await(
    notifier: Notifier,
    message: str,
    options: Sequence[str],
    timeout_seconds: float,
) -> NotificationResult:
    """用户选择与超时之间的竞争，只会得到其中一个结果"""
    try:
        label = await asyncio.wait_for(notifier.present(message, options), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.debug(f"通知等待超时 ({timeout_seconds}s): {message}")
        return TimedOut("timeout")
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.opt(exception=e).error(f"通知通道 {notifier.name} 出错: {e}")
        return TimedOut("error")

    if label is None:
        return TimedOut("no_selection")
    if label not in options:
        logger.warning(f"通知通道 {notifier.name} 返回了未知选项: {label}")
        return TimedOut("no_selection")
    return Choice(label)
