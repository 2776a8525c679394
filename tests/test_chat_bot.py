"""
Unit Tests for the Telegram Adapter

Test coverage for:
- Replies sent to the chat whose id is the identity
- Text and voice updates forwarded to the router
- Error handler always answering
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import TelegramError

from chat_bot.bot import ROUTER_KEY, TelegramChannel, error_handler, handle_text, handle_voice


def make_context(router=None):
    context = MagicMock()
    context.bot = MagicMock()
    context.bot.send_message = AsyncMock()
    context.application.bot_data = {ROUTER_KEY: router or MagicMock()}
    return context


def make_update(chat_id=4242, text=None, voice=None):
    update = MagicMock()
    update.effective_chat.id = chat_id
    update.effective_message.text = text
    update.effective_message.voice = voice
    update.effective_message.audio = None
    update.effective_message.reply_text = AsyncMock()
    return update


class TestTelegramChannel:
    """Tests for TelegramChannel."""

    @pytest.mark.asyncio
    async def test_send_text_uses_chat_id(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        await TelegramChannel(bot).send_text("4242", "hello")
        bot.send_message.assert_awaited_once_with(chat_id=4242, text="hello")

    @pytest.mark.asyncio
    async def test_send_failure_is_logged_not_raised(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=TelegramError("Forbidden: bot was blocked"))
        await TelegramChannel(bot).send_text("4242", "hello")


class TestHandlers:
    """Tests for update handlers."""

    @pytest.mark.asyncio
    async def test_text_forwarded_to_router(self):
        router = MagicMock()
        router.handle_text = AsyncMock()
        context = make_context(router)

        await handle_text(make_update(text="/repos"), context)

        identity, text, channel = router.handle_text.call_args.args
        assert identity == "4242"
        assert text == "/repos"
        assert isinstance(channel, TelegramChannel)

    @pytest.mark.asyncio
    async def test_empty_text_ignored(self):
        router = MagicMock()
        router.handle_text = AsyncMock()
        await handle_text(make_update(text=""), make_context(router))
        router.handle_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_voice_downloaded_and_forwarded(self):
        telegram_file = MagicMock()
        telegram_file.download_as_bytearray = AsyncMock(return_value=bytearray(b"OggS"))
        voice = MagicMock()
        voice.get_file = AsyncMock(return_value=telegram_file)
        voice.file_name = None
        router = MagicMock()
        router.handle_audio = AsyncMock()

        await handle_voice(make_update(voice=voice), make_context(router))

        identity, audio, filename, _ = router.handle_audio.call_args.args
        assert identity == "4242"
        assert audio == b"OggS"
        assert filename == "voice.ogg"

    @pytest.mark.asyncio
    async def test_error_handler_replies(self):
        from telegram import Update

        update = MagicMock(spec=Update)
        update.effective_message = MagicMock()
        update.effective_message.reply_text = AsyncMock()
        context = make_context()
        context.error = RuntimeError("boom")

        await error_handler(update, context)

        update.effective_message.reply_text.assert_awaited_once()
