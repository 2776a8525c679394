"""
Telegram Bot

Thin adapter between Telegram updates and the Commeta router. The chat id is
the identity; every command, free-text message and voice note goes through
the same router entry points as the HTTP channel.

Safety:
- Non-allowed chats are ignored by the router (logged, no reply)
- Updates are processed concurrently; the router serializes per identity
- The error handler ALWAYS tries to respond
"""

import logging
import sys
from typing import Optional

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from . import __version__
from commeta.channel import Channel
from commeta.config import Settings, configure_logging
from commeta.router import Router, create_router

logger = logging.getLogger("telegram_bot")

ROUTER_KEY = "router"


class TelegramChannel(Channel):
    """Sends replies to the chat whose id is the identity."""

    def __init__(self, bot):
        self._bot = bot

    async def send_text(self, identity: str, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=int(identity), text=text)
        except TelegramError as e:
            logger.error(f"Failed to send message to {identity}: {e}")


def _router(context: ContextTypes.DEFAULT_TYPE) -> Router:
    return context.application.bot_data[ROUTER_KEY]


# -----------------------------------------------------------------------------
# Handlers
# -----------------------------------------------------------------------------
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Commands and free text share one path through the router."""
    message = update.effective_message
    if message is None or not message.text:
        return
    identity = str(update.effective_chat.id)
    await _router(context).handle_text(identity, message.text, TelegramChannel(context.bot))


async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if message is None:
        return
    media = message.voice or message.audio
    if media is None:
        return
    identity = str(update.effective_chat.id)
    telegram_file = await media.get_file()
    audio = bytes(await telegram_file.download_as_bytearray())
    filename = getattr(media, "file_name", None) or "voice.ogg"
    logger.info(f"Received {len(audio)} bytes of audio from {identity}")
    await _router(context).handle_audio(identity, audio, filename, TelegramChannel(context.bot))


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors - ALWAYS tries to respond."""
    logger.error(f"Update {update} caused error {context.error}")

    try:
        if isinstance(update, Update) and update.effective_message:
            await update.effective_message.reply_text(
                "An error occurred. Please try again later."
            )
    except TelegramError as e:
        logger.error(f"Failed to send error response: {e}")


# -----------------------------------------------------------------------------
# Application
# -----------------------------------------------------------------------------
def build_application(settings: Settings, router: Optional[Router] = None) -> Application:
    application = (
        Application.builder()
        .token(settings.telegram_bot_token)
        .concurrent_updates(True)
        .build()
    )
    application.bot_data[ROUTER_KEY] = router or create_router(settings)

    application.add_handler(MessageHandler(filters.TEXT, handle_text))
    application.add_handler(MessageHandler(filters.VOICE | filters.AUDIO, handle_voice))
    application.add_error_handler(error_handler)
    return application


def main():
    """Start the bot."""
    settings = Settings.from_env()
    configure_logging(settings)

    if not settings.telegram_bot_token:
        logger.error("TELEGRAM_BOT_TOKEN environment variable not set!")
        sys.exit(1)

    logger.info("Starting Telegram bot...")
    logger.info(f"Bot Version: {__version__}")
    if settings.allowed_identities:
        logger.info(f"Allow-list: {len(settings.allowed_identities)} identities configured")

    application = build_application(settings)

    logger.info("Bot started. Polling for updates...")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
