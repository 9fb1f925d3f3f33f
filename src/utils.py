from datetime import datetime, timezone
from zoneinfo import ZoneInfo
import time

__all__ = ["now_ms", "minutes_to_ms", "ms_to_utc_str", "ms_to_user_local_str",
           "format_remaining"]

MS_PER_MINUTE = 60_000


def now_ms() -> int:
    """获取当前 epoch 毫秒"""
    return int(time.time() * 1000)

def minutes_to_ms(minutes: float) -> int:
    return int(round(minutes * MS_PER_MINUTE))

def ms_to_utc_str(ms: int) -> str:
    """格式: 'YYYY-MM-DDTHH:MM:SSZ'"""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def ms_to_user_local_str(ms: int, user_tz: str) -> str:
    """格式: 'YYYY-MM-DD HH:MM:SS'"""
    local_dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone(ZoneInfo(user_tz))
    return local_dt.strftime("%Y-%m-%d %H:%M:%S")

def format_remaining(ms: int | None) -> str:
    # 与侧边栏显示一致: "12m 5s"
    if ms is None:
        return "-"
    ms = max(0, ms)
    return f"{ms // MS_PER_MINUTE}m {(ms % MS_PER_MINUTE) // 1000}s"
