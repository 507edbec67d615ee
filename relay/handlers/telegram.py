"""Telegram handlers feeding the relay and the outbound sender."""
from __future__ import annotations

import logging

from telegram import Bot, Update
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from relay.config import START_GREETING
from relay.dispatch import Relay
from relay.errors import OutboundDeliveryError
from relay.ports import Sender
from relay.utils.timing import log_outbound_timing

logger = logging.getLogger(__name__)

RELAY_KEY = "relay"
GREETING_KEY = "start_greeting"


def _get_relay(context: ContextTypes.DEFAULT_TYPE) -> Relay:
    return context.bot_data[RELAY_KEY]


async def start_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the /start command.

    Registers the chat with the relay and greets the user.

    Args:
        update: The update containing the message.
        context: The context object.
    """
    if update.effective_message is None or update.effective_chat is None:
        return

    user = update.effective_user
    chat_id = str(update.effective_chat.id)
    logger.debug("Received /start command chat_id=%s", chat_id)

    await _get_relay(context).on_start(
        chat_id=chat_id,
        username=user.username if user else None,
        first_name=user.first_name if user else None,
        last_name=user.last_name if user else None,
    )

    greeting = context.bot_data.get(GREETING_KEY, START_GREETING)
    await update.effective_message.reply_text(greeting)


async def text_message_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Forward a user's text message to the relay."""
    message = update.effective_message
    if message is None or update.effective_chat is None or not message.text:
        return

    user = update.effective_user
    chat_id = str(update.effective_chat.id)
    logger.debug("Received text message chat_id=%s", chat_id)

    await _get_relay(context).on_text_message(
        chat_id=chat_id,
        text=message.text,
        username=user.username if user else None,
        first_name=user.first_name if user else None,
        last_name=user.last_name if user else None,
    )


def make_telegram_sender(bot: Bot) -> Sender:
    """Build the outbound sender that delivers operator replies via ``bot``."""

    async def send(chat_id: str, text: str) -> None:
        try:
            await log_outbound_timing(
                chat_id, lambda: bot.send_message(chat_id=chat_id, text=text)
            )
        except TelegramError as e:
            logger.error("Failed to send message chat_id=%s: %s", chat_id, e)
            raise OutboundDeliveryError(chat_id, str(e)) from e
        logger.debug("sendMessage chat_id=%s text_length=%d", chat_id, len(text))

    return send


def register_handlers(application: Application, relay: Relay, greeting: str = START_GREETING) -> None:
    """Attach the relay and its handlers to ``application``."""
    application.bot_data[RELAY_KEY] = relay
    application.bot_data[GREETING_KEY] = greeting
    application.add_handler(CommandHandler("start", start_handler))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, text_message_handler))
