from logger import setup_logging, logger
from config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    console_level=CONSOLE_LOG_LEVEL,
)

import asyncio
import signal
import time

from admin.app import create_app
from admin.http_server import main_loop as admin_http_main
from admin.schemas import RuntimeControl
from channels.base import Notifier
from channels.webview_ws import WebviewChannel
from core.manager import ReminderManager
import storage.db_config as db_config
from storage.reminder import SqliteReminderStore

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


def _create_channels() -> tuple[Notifier, dict]:
    """根据配置创建通道，返回 (提醒弹出通道, 全部通道)"""
    webview = WebviewChannel()
    channels: dict = {"webview": webview}

    if ENABLE_TELEGRAM_BOT_POLLING:
        from channels.telegram_polling import TelegramChannel

        channels["telegram"] = TelegramChannel()
    else:
        logger.warning("Telegram Bot Polling 已禁用")

    if PRIMARY_CONTACT_METHOD == "telegram":
        return channels["telegram"], channels
    return webview, channels


async def main():
    # 注册信号处理器
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    db_config.init_db(DATA_DB_PATH)

    notifier, channels = _create_channels()
    manager = ReminderManager(SqliteReminderStore(STORAGE_SLOT), notifier)
    for channel in channels.values():
        channel.bind(manager)

    control = RuntimeControl(shutdown_event=shutdown_event, started_at=time.time())
    app = create_app(control, manager, channels=channels)

    try:
        tasks = [admin_http_main(app, shutdown_event)]
        tasks += [channel.main(shutdown_event) for channel in channels.values()]
        await asyncio.gather(*tasks)
    finally:
        logger.info("关闭 Chime...")
        await manager.shutdown()

        logger.info("关闭数据库连接...")
        db_config.close_db()
        logger.info("Chime 已关闭")


if __name__ == "__main__":
    logger.info("启动 Chime...")
    asyncio.run(main())
