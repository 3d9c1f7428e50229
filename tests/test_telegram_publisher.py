"""
Tests for TelegramPublisher with a mocked ``telegram.Bot``.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError, TelegramError

from publisher.telegram_publisher import ERROR_REPORT_HEADER, TelegramPublisher
from shared.errors import ErrorKind, PublishAPIError


@pytest.fixture
def bot():
    mock = AsyncMock()
    mock.send_photo.return_value = MagicMock(message_id=42)
    return mock


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_returns_message_id(self, bot):
        publisher = TelegramPublisher(bot=bot)
        message_id = await publisher.publish("@photos", "https://live.staticflickr.com/1/1_s_c.jpg", "*Title*")

        assert message_id == 42
        bot.send_photo.assert_awaited_once_with(
            chat_id="@photos",
            photo="https://live.staticflickr.com/1/1_s_c.jpg",
            caption="*Title*",
            parse_mode=ParseMode.MARKDOWN_V2,
        )

    @pytest.mark.asyncio
    async def test_publish_failure_raises_publish_error(self, bot):
        bot.send_photo.side_effect = BadRequest("Can't parse entities: character '.' is reserved")
        publisher = TelegramPublisher(bot=bot)

        with pytest.raises(PublishAPIError) as info:
            await publisher.publish("@photos", "url", "bad.")
        assert info.value.kind is ErrorKind.PUBLISH_API
        assert info.value.method == "sendPhoto"
        assert "reserved" in str(info.value)

    @pytest.mark.asyncio
    async def test_network_errors_not_retried(self, bot):
        bot.send_photo.side_effect = NetworkError("Bad Gateway")
        publisher = TelegramPublisher(bot=bot)

        with pytest.raises(PublishAPIError):
            await publisher.publish("@photos", "url", "body")
        assert bot.send_photo.await_count == 1


class TestEdit:
    @pytest.mark.asyncio
    async def test_edit_caption(self, bot):
        publisher = TelegramPublisher(bot=bot)
        assert await publisher.edit("@photos", 42, "*New*") == 42
        bot.edit_message_caption.assert_awaited_once_with(
            chat_id="@photos",
            message_id=42,
            caption="*New*",
            parse_mode=ParseMode.MARKDOWN_V2,
        )

    @pytest.mark.asyncio
    async def test_not_modified_counts_as_success(self, bot):
        bot.edit_message_caption.side_effect = BadRequest(
            "Message is not modified: specified new message content and reply markup are exactly the same"
        )
        publisher = TelegramPublisher(bot=bot)
        assert await publisher.edit("@photos", 42, "*Same*") == 42

    @pytest.mark.asyncio
    async def test_other_bad_request_fails(self, bot):
        bot.edit_message_caption.side_effect = BadRequest("Message to edit not found")
        publisher = TelegramPublisher(bot=bot)
        with pytest.raises(PublishAPIError) as info:
            await publisher.edit("@photos", 42, "*New*")
        assert info.value.method == "editMessageCaption"


class TestReportError:
    @pytest.mark.asyncio
    async def test_report_is_escaped_with_header(self, bot):
        publisher = TelegramPublisher(bot=bot)
        await publisher.report_error("-1009999", "Flickr API error: boom (code=1)")

        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == "-1009999"
        assert kwargs["parse_mode"] == ParseMode.MARKDOWN_V2
        assert kwargs["text"] == ERROR_REPORT_HEADER + "\nFlickr API error: boom \\(code\\=1\\)"

    @pytest.mark.asyncio
    async def test_long_report_truncated(self, bot):
        publisher = TelegramPublisher(bot=bot)
        await publisher.report_error("-1009999", "x" * 10000)
        assert len(bot.send_message.await_args.kwargs["text"]) < 4096

    @pytest.mark.asyncio
    async def test_report_failure_raises(self, bot):
        bot.send_message.side_effect = TelegramError("Forbidden: bot is not a member")
        publisher = TelegramPublisher(bot=bot)
        with pytest.raises(PublishAPIError):
            await publisher.report_error("-1009999", "boom")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_initialises_and_shuts_down(self, bot):
        async with TelegramPublisher(bot=bot) as publisher:
            assert isinstance(publisher, TelegramPublisher)
        bot.initialize.assert_awaited_once()
        bot.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_token_surfaces_as_publish_error(self, bot):
        bot.initialize.side_effect = TelegramError("Unauthorized")
        with pytest.raises(PublishAPIError) as info:
            async with TelegramPublisher(bot=bot):
                pass
        assert info.value.method == "getMe"

    def test_requires_token_or_bot(self):
        with pytest.raises(ValueError):
            TelegramPublisher()
