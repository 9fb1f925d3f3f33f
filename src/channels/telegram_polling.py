import asyncio
import datetime
import uuid
from typing import Sequence

import telegram
from telegram.ext import Application, ApplicationBuilder, CallbackQueryHandler, CommandHandler, ContextTypes

from channels.base import Notifier
from config.settings import PRIMARY_TELEGRAM_CHAT_ID, TELEGRAM_BOT_TOKEN, USER_TIMEZONE
from core.manager import ReminderManager
from logger import logger
from utils import format_remaining, ms_to_user_local_str


class TelegramChannel(Notifier):
    """通过 Telegram 行内按钮弹出提醒，并支持 /start、/list 命令"""

    name = "telegram"

    def __init__(self, manager: ReminderManager | None = None, *, token: str = TELEGRAM_BOT_TOKEN,
                 chat_id: int = PRIMARY_TELEGRAM_CHAT_ID) -> None:
        self._manager = manager
        self._token = token
        self.chat_id = chat_id
        self._bot: telegram.Bot | None = None
        # request_id -> (future, options)
        self._pending: dict[str, tuple[asyncio.Future, list[str]]] = {}

    def bind(self, manager: ReminderManager) -> None:
        self._manager = manager

    def get_status(self) -> dict[str, object]:
        return {
            "connected": self._bot is not None,
            "chat_id": self.chat_id,
            "pending_notifications": len(self._pending),
        }

    # ----------------- 通知 ----------------
    async def present(self, message: str, options: Sequence[str]) -> str | None:
        if self._bot is None or self.chat_id == 0:
            logger.info(f"Telegram 尚未就绪, 提醒未展示: {message}")
            return None

        request_id = uuid.uuid4().hex[:16]
        keyboard = telegram.InlineKeyboardMarkup([
            [telegram.InlineKeyboardButton(label, callback_data=f"{request_id}:{idx}")
             for idx, label in enumerate(options)]
        ])
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (future, list(options))
        try:
            await self._bot.send_message(chat_id=self.chat_id, text=message, reply_markup=keyboard)
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def on_callback_query(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None or query.data is None:
            return

        request_id, _, raw_index = query.data.partition(":")
        pending = self._pending.get(request_id)
        if pending is None:
            await query.answer("This reminder has expired.")
            return

        future, options = pending
        try:
            label = options[int(raw_index)]
        except (ValueError, IndexError):
            logger.warning(f"收到非法的 Telegram 回调数据: {query.data}")
            await query.answer()
            return

        if not future.done():
            future.set_result(label)
        await query.answer(label)
        try:
            await query.edit_message_reply_markup(reply_markup=None)
        except telegram.error.TelegramError as e:
            logger.debug(f"移除 Telegram 按钮失败: {e}")

    # ----------------- 命令 ----------------
    async def cmd_start(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat_id = update.effective_chat.id
        logger.info(f"收到 /start 命令来自 Telegram chat_id: {chat_id}")
        if self.chat_id == 0:
            self.chat_id = chat_id
            logger.info(f"Telegram 提醒将发送到 chat_id: {chat_id}")
        elif self.chat_id != chat_id:
            logger.warning(f"chat_id {chat_id} 不是主会话, 拒绝 /start")
            await update.message.reply_text("This bot is bound to another chat.")
            return
        await update.message.reply_text("Reminders online.")

    async def cmd_list(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if self._manager is None or update.effective_chat.id != self.chat_id:
            return

        reminders = self._manager.get_all()
        if not reminders:
            await update.message.reply_text("No reminders yet.")
            return

        now = self._manager.now_ms()
        lines = []
        for r in reminders:
            if r.next_trigger_time is None:
                when = "-"
            else:
                when = f"{ms_to_user_local_str(r.next_trigger_time, USER_TIMEZONE)} (in {format_remaining(r.time_until_trigger(now))})"
            lines.append(f"[{r.state.value.upper()}] {r.text} / every {r.interval_minutes:g} min / next: {when}")
        stats = self._manager.get_stats()
        lines.append(f"total={stats.total} active={stats.active} paused={stats.paused} snoozed={stats.snoozed}")
        await update.message.reply_text("\n".join(lines))

    async def error_handler(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 telegram 库中发生的错误"""
        logger.opt(exception=context.error).error(f"Telegram 错误: {context.error}")

    def build_application(self) -> Application:
        app = ApplicationBuilder().token(self._token).build()
        app.add_handler(CommandHandler("start", self.cmd_start))
        app.add_handler(CommandHandler("list", self.cmd_list))
        app.add_handler(CallbackQueryHandler(self.on_callback_query))
        app.add_error_handler(self.error_handler)
        return app

    async def main(self, shutdown_event: asyncio.Event) -> None:
        app = self.build_application()
        try:
            await app.initialize()
            self._bot = app.bot
            await app.updater.start_polling(
                poll_interval=0.5,
                timeout=datetime.timedelta(seconds=15),
                bootstrap_retries=-1,
                drop_pending_updates=True,
                error_callback=_bot_error_callback,
            )
            await app.start()
            logger.info("Telegram Bot Polling 已启动")

            await shutdown_event.wait()
        finally:
            logger.info("关闭 Telegram Bot Polling...")
            self._bot = None
            for future, _ in list(self._pending.values()):
                if not future.done():
                    future.set_result(None)
            if app.updater.running:
                await app.updater.stop()
            if app.running:
                await app.stop()
            await app.shutdown()


def _bot_error_callback(error: telegram.error.TelegramError) -> None:
    if isinstance(error, telegram.error.NetworkError):
        logger.warning(f"Telegram Bot 网络错误: {error}")
    else:
        logger.opt(exception=error).error(f"Telegram Bot 发生预期外的错误: {error}")


__all__ = ["TelegramChannel"]
