"""
TelegramPublisher: posts and edits photo messages in the channel and
sends error reports, through ``python-telegram-bot``'s ``Bot``.

Every Bot API failure is raised as ``PublishAPIError`` and never retried:
the photo's metadata is already stored, so the next scheduled run
re-derives the publish decision safely.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from telegram import Bot, Message
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from publisher.markdown import escape_markdown
from shared.errors import PublishAPIError

logger = logging.getLogger("publisher.telegram_publisher")

ChatId = Union[int, str]

ERROR_REPORT_HEADER = "*Flickr Channel Sync \\| Error*"
# Telegram rejects text messages over 4096 characters; leave room for the
# header and the escapes.
_MAX_REPORT_CHARS = 3000


def _is_not_modified(exc: TelegramError) -> bool:
    return isinstance(exc, BadRequest) and "message is not modified" in str(exc).lower()


class TelegramPublisher:
    """Channel publisher bound to one bot.

    Usage::

        async with TelegramPublisher(token) as publisher:
            message_id = await publisher.publish(chat_id, url, caption)

    Args:
        token: Bot API token.
        bot: Pre-built ``telegram.Bot`` (tests pass a mock).
    """

    def __init__(self, token: Optional[str] = None, bot: Optional[Bot] = None) -> None:
        if bot is None:
            if not token:
                raise ValueError("TelegramPublisher needs a token or a bot")
            bot = Bot(token)
        self._bot = bot

    # ----- async context manager ------------------------------------------

    async def __aenter__(self) -> "TelegramPublisher":
        try:
            await self._bot.initialize()
        except TelegramError as exc:
            raise PublishAPIError(str(exc), "getMe") from exc
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self._bot.shutdown()

    # ----- channel messages -----------------------------------------------

    async def publish(self, chat_id: ChatId, photo_url: str, body: str) -> int:
        """Post a new photo message; return its ``message_id``."""
        try:
            message: Message = await self._bot.send_photo(
                chat_id=chat_id,
                photo=photo_url,
                caption=body,
                parse_mode=ParseMode.MARKDOWN_V2,
            )
        except TelegramError as exc:
            raise PublishAPIError(str(exc), "sendPhoto") from exc
        logger.info("Published photo %s to %s as message %d", photo_url, chat_id, message.message_id)
        return message.message_id

    async def edit(self, chat_id: ChatId, message_id: int, body: str) -> int:
        """Replace the caption of an existing message in place.

        Telegram's "message is not modified" answer means the caption
        already matches and counts as success.
        """
        try:
            await self._bot.edit_message_caption(
                chat_id=chat_id,
                message_id=message_id,
                caption=body,
                parse_mode=ParseMode.MARKDOWN_V2,
            )
        except TelegramError as exc:
            if _is_not_modified(exc):
                logger.info("Message %d in %s already up to date", message_id, chat_id)
                return message_id
            raise PublishAPIError(str(exc), "editMessageCaption") from exc
        logger.info("Edited caption of message %d in %s", message_id, chat_id)
        return message_id

    # ----- error channel --------------------------------------------------

    async def report_error(self, chat_id: ChatId, text: str) -> None:
        """Send a plain-text error report to the error channel."""
        if len(text) > _MAX_REPORT_CHARS:
            text = text[:_MAX_REPORT_CHARS] + "..."
        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=f"{ERROR_REPORT_HEADER}\n{escape_markdown(text)}",
                parse_mode=ParseMode.MARKDOWN_V2,
            )
        except TelegramError as exc:
            raise PublishAPIError(str(exc), "sendMessage") from exc
