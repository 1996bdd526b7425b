# services/notify.py
import html
import logging

from telebot import TeleBot

logger = logging.getLogger(__name__)


class AdminNotifier:
    """Telegram messages to admins. A no-op when no bot token or chat is configured."""

    def __init__(self, bot_token="", chat_ids=None, bot=None):
        self.chat_ids = list(chat_ids or [])
        self.bot = bot
        if self.bot is None and bot_token and self.chat_ids:
            self.bot = TeleBot(bot_token, parse_mode="HTML", threaded=False)

    @property
    def enabled(self):
        return self.bot is not None and bool(self.chat_ids)

    def _send(self, text):
        for chat_id in self.chat_ids:
            try:
                self.bot.send_message(chat_id, text)
            except Exception as e:
                # delivery is best-effort; the payment already went through
                logger.warning("Could not notify admin chat %s: %s", chat_id, e)

    def promo_used(self, pricing, id_transaksi):
        if not self.enabled:
            return
        applied = pricing.get("appliedPromo") or {}
        label = html.escape(applied.get("code") or "monthly")
        text = (
            f"🎟️ Promo used: <b>{label}</b>\n"
            f"🧾 {html.escape(str(id_transaksi))}\n"
            f"💳 {pricing['amountOriginal']} → {pricing['amountFinal']} "
            f"(-{pricing['discountAmount']})"
        )
        self._send(text)
