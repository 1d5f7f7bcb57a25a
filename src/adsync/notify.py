"""
Notification sinks for user-facing sync feedback.

notify() is fire-and-forget: callers never wait on delivery and a failed
delivery is logged, not raised.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol, Set

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class Notifier(Protocol):
    def notify(self, message: str, severity: Severity) -> None:
        ...


class LogNotifier:
    """Writes notifications to the application log."""

    _LEVELS = {
        Severity.INFO: logging.INFO,
        Severity.SUCCESS: logging.INFO,
        Severity.ERROR: logging.ERROR,
    }

    def notify(self, message: str, severity: Severity) -> None:
        logger.log(self._LEVELS[Severity(severity)], "[%s] %s", Severity(severity).value, message)


_ICONS = {Severity.INFO: "ℹ️", Severity.SUCCESS: "✅", Severity.ERROR: "❌"}


class TelegramNotifier:
    """
    Sends notifications to one Telegram chat.

    Delivery runs as a background task on the current event loop. Outside a
    running loop the message is only logged.
    """

    def __init__(self, bot, chat_id: int, fallback: Optional[Notifier] = None):
        """
        Args:
            bot: telegram.Bot instance (or AsyncMock in tests).
            chat_id: Owner chat to send to.
            fallback: Also receives every notification (defaults to LogNotifier).
        """
        self._bot = bot
        self._chat_id = chat_id
        self._fallback = fallback or LogNotifier()
        self._pending: Set[asyncio.Task] = set()

    def notify(self, message: str, severity: Severity) -> None:
        severity = Severity(severity)
        self._fallback.notify(message, severity)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._send(f"{_ICONS[severity]} {message}"))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def _send(self, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=self._chat_id, text=text)
        except Exception as exc:
            logger.warning("Telegram notification failed: %s", exc)


def build_notifier(settings) -> Notifier:
    """TelegramNotifier when a bot token and chat are configured, else LogNotifier."""
    if settings.telegram_bot_token and settings.telegram_chat_id:
        from telegram import Bot
        return TelegramNotifier(Bot(token=settings.telegram_bot_token), settings.telegram_chat_id)
    return LogNotifier()
