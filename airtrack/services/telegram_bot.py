"""Telegram bot for position notifications and remote control."""

import asyncio
import logging
import threading
from typing import Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
)

from airtrack.config import settings

logger = logging.getLogger(__name__)

_bot_instance: Optional["TelegramBot"] = None


def format_trade_line(trade) -> str:
    line = f"#{trade.id} {trade.side} {trade.symbol}/{trade.quote} [{trade.status}] entry {trade.entry_price}"
    if trade.status == "OPEN":
        line += f" | uPnL {trade.pnl_unrealized_pct:+.2f}%"
    return line


class TelegramBot:
    """Telegram bot running in a background thread with its own event loop."""

    def __init__(self, token: str, chat_ids: list[int], store=None):
        self.token = token
        self.chat_ids = set(chat_ids)
        self._store = store
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def store(self):
        if self._store is None:
            from airtrack.engine.store import get_position_store
            self._store = get_position_store()
        return self._store

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from airtrack.engine.scheduler import get_scheduler_status
        from airtrack.services.reports import build_report

        status = get_scheduler_status()
        report = build_report(self.store, "all")
        totals = report["totals"]

        scheduler_str = "running" if status["running"] else "stopped"
        text = (
            f"Scheduler: {scheduler_str} (every {status['interval_ms'] // 1000}s)\n"
            f"Open: {totals['open']} | Pending: {totals['pending']} | Closed: {totals['closed']}\n"
            f"Realized PnL: {report['pnl_realized_pct_sum']:+.2f}%"
        )
        await update.message.reply_text(text)

    async def _cmd_positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        from airtrack.models.trade import ACTIVE_STATUSES

        trades = self.store.find_many(ACTIVE_STATUSES)
        if not trades:
            await update.message.reply_text("No active trades.")
            return
        await update.message.reply_text("\n".join(format_trade_line(t) for t in trades))

    async def _cmd_close_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, close all", callback_data="confirm_close_all"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            "Close all open trades and remove all pending ones?",
            reply_markup=keyboard,
        )

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.from_user or not self._is_authorized(query.from_user.id):
            return

        await query.answer()

        if query.data == "cancel":
            await query.edit_message_text("Cancelled.")
            return

        if query.data == "confirm_close_all":
            from airtrack.services.trade_admin import close_all

            # Subscribers pick the change up on the next tick's broadcast
            result = close_all(self.store)
            await query.edit_message_text(
                f"Closed {result['closedCount']} trades, removed {result['removedPending']} pending."
            )

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def _run_bot(self):
        """Run the bot in a background thread with its own event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = (
            Application.builder()
            .token(self.token)
            .build()
        )

        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("positions", self._cmd_positions))
        self._app.add_handler(CommandHandler("close_all", self._cmd_close_all))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)


def init_bot() -> TelegramBot:
    """Initialize and return the bot singleton."""
    global _bot_instance
    _bot_instance = TelegramBot(
        token=settings.telegram_bot_token,
        chat_ids=settings.telegram_chat_ids,
    )
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    """Get the bot singleton, or None if not initialized."""
    return _bot_instance
