import os
from dotenv import load_dotenv
from logger import logger
load_dotenv()

__all__ = [
    "DATA_DB_PATH", "STORAGE_SLOT",
    "LOG_LEVEL", "CONSOLE_LOG_LEVEL", "LOG_FILE",
    "NOTIFICATION_TIMEOUT_SECONDS",
    "USER_TIMEZONE", "PRIMARY_CONTACT_METHOD",
    "ENABLE_TELEGRAM_BOT_POLLING", "TELEGRAM_BOT_TOKEN", "PRIMARY_TELEGRAM_CHAT_ID",
    "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN",
    "WEBVIEW_WS_PATH", "WEBVIEW_WS_TOKEN",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default
    if value <= 0:
        logger.warning(f"{name} 必须大于 0: {raw}, 已回退到 {default}")
        return default
    return value


# 存储
DATA_DB_PATH = os.getenv("DATA_DB_PATH", "data/chime.db")
STORAGE_SLOT = os.getenv("STORAGE_SLOT", "reminders")

# 日志
LOG_LEVEL = os.getenv("LOG_LEVEL", "TRACE")
CONSOLE_LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "logs/chime.log")

# 提醒行为
NOTIFICATION_TIMEOUT_SECONDS = _parse_positive_float("NOTIFICATION_TIMEOUT_SECONDS", 10.0)

# 用户信息，仅用于展示时间
USER_TIMEZONE = os.getenv("USER_TIMEZONE", "Asia/Shanghai")

# 提醒弹出方式: "webview" 或 "telegram"
PRIMARY_CONTACT_METHOD = os.getenv("PRIMARY_CONTACT_METHOD", "webview").strip().lower()
if PRIMARY_CONTACT_METHOD not in ("webview", "telegram"):
    logger.critical(f"PRIMARY_CONTACT_METHOD 非法: {PRIMARY_CONTACT_METHOD}, 仅支持 webview 或 telegram")
    exit(0)

# Telegram Bot
ENABLE_TELEGRAM_BOT_POLLING = _parse_bool("ENABLE_TELEGRAM_BOT_POLLING", PRIMARY_CONTACT_METHOD == "telegram")
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
if ENABLE_TELEGRAM_BOT_POLLING and TELEGRAM_BOT_TOKEN == "":
    logger.critical("已启用 Telegram Bot Polling, 但 TELEGRAM_BOT_TOKEN 未设置")
    exit(0)

PRIMARY_TELEGRAM_CHAT_ID = int(os.getenv("PRIMARY_TELEGRAM_CHAT_ID", "0"))
if ENABLE_TELEGRAM_BOT_POLLING and PRIMARY_TELEGRAM_CHAT_ID == 0:
    logger.warning("未设置 PRIMARY_TELEGRAM_CHAT_ID, 将使用第一个发送 /start 的会话")

if PRIMARY_CONTACT_METHOD == "telegram" and not ENABLE_TELEGRAM_BOT_POLLING:
    logger.critical("PRIMARY_CONTACT_METHOD=telegram, 但 ENABLE_TELEGRAM_BOT_POLLING 被关闭")
    exit(0)


# Admin API / Webview
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = int(os.getenv("ADMIN_HTTP_PORT", "18080"))
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")

WEBVIEW_WS_PATH = os.getenv("WEBVIEW_WS_PATH", "/channels/webview/ws")
WEBVIEW_WS_TOKEN = os.getenv("WEBVIEW_WS_TOKEN", "")
