"""
Stream transport over python-telegram-bot.

The orchestrator runs in a worker thread (blocking Groq and catalog calls),
while the bot lives on its own asyncio loop. Every send/edit/delete is
scheduled on that loop and waited for, so the emitter sees message ids in order.

Edit failures (message not modified, flood control) are logged and skipped:
the final text is always sent by finish(), a lost intermediate edit only
costs a frame.
"""
import asyncio
import logging
from typing import Any, Optional

from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 10


class TelegramStreamTransport:

    def __init__(self, bot: Bot, chat_id: int, loop: asyncio.AbstractEventLoop):
        self.bot = bot
        self.chat_id = chat_id
        self.loop = loop

    def _call(self, coro) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=SEND_TIMEOUT_SECONDS)

    def send(self, text: str) -> Optional[int]:
        message = self._call(self.bot.send_message(chat_id=self.chat_id, text=text))
        return message.message_id

    def edit(self, handle: Any, text: str) -> None:
        try:
            self._call(self.bot.edit_message_text(chat_id=self.chat_id, message_id=handle, text=text))
        except TelegramError as e:
            logger.warning(f"[Telegram] Edit of message {handle} in chat {self.chat_id} failed: {e}")

    def delete(self, handle: Any) -> None:
        try:
            self._call(self.bot.delete_message(chat_id=self.chat_id, message_id=handle))
        except TelegramError as e:
            logger.warning(f"[Telegram] Delete of message {handle} in chat {self.chat_id} failed: {e}")
