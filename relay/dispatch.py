"""Relay dispatch between Telegram chats and WebSocket subscribers."""
from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, Iterable, List, Optional

from relay.errors import OutboundNotReadyError
from relay.ports import BroadcastPort, OutboundPort
from relay.store import ChatInfo, Message, MessageStore
from relay.utils.timing import flow_timing

logger = logging.getLogger(__name__)

EVENT_GET_CHATS = "get_chats"
EVENT_NEW_CHAT = "new_chat"
EVENT_GET_CHAT_MESSAGES = "get_chat_messages"
EVENT_MESSAGE_FROM_USER = "message_from_user"
EVENT_MESSAGE_FROM_BOT = "message_from_bot"
EVENT_ERROR = "error"

ERROR_BOT_NOT_INITIALIZED = "Bot not initialized"
ERROR_SEND_FAILED = "Failed to send message to Telegram"


def _payload(items: Iterable[Message | ChatInfo]) -> List[Dict[str, Any]]:
    return [item.to_payload() for item in items]


class Relay:
    """Records inbound events in the store and fans them out to subscribers.

    Broadcasts always carry a full snapshot: the whole chat list for chat
    events, the whole message list of the affected chat for message events.
    """

    def __init__(
        self,
        store: MessageStore,
        outbound: OutboundPort,
        broadcast: BroadcastPort,
    ) -> None:
        self.store = store
        self.outbound = outbound
        self.broadcast = broadcast

    async def on_start(
        self,
        chat_id: str,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> None:
        """Handle a /start command from Telegram."""
        logger.info("handle_bot_start chat_id=%s", chat_id)
        async with flow_timing("start", chat_id):
            chat = ChatInfo(
                chat_id=chat_id,
                username=username,
                first_name=first_name,
                last_name=last_name,
            )
            with self.store.atomic():
                self.store.upsert_chat(chat)
                chats = _payload(self.store.list_chats())
            await self.broadcast.emit_to_all(EVENT_NEW_CHAT, chats)

    async def on_text_message(
        self,
        chat_id: str,
        text: str,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> None:
        """Handle a text message a Telegram user sent to the bot."""
        logger.info("[Bot] Message from %s in chat %s", username or first_name, chat_id)
        async with flow_timing("user_message", chat_id):
            message = Message.from_user(
                chat_id=chat_id,
                text=text,
                username=username,
                first_name=first_name,
            )
            with self.store.atomic():
                # A message refreshes the chat identity even without /start
                self.store.upsert_chat(
                    ChatInfo(
                        chat_id=chat_id,
                        username=username,
                        first_name=first_name,
                        last_name=last_name,
                    )
                )
                self.store.append_message(message)
                messages = _payload(self.store.list_messages(chat_id))
            await self.broadcast.emit_to_all(EVENT_MESSAGE_FROM_USER, messages)

    async def on_subscriber_connected(self, subscriber: Hashable) -> None:
        """Send the current chat list to a newly connected subscriber."""
        logger.info("Client connected: %s", subscriber)
        chats = _payload(self.store.list_chats())
        await self.broadcast.emit_to_one(subscriber, EVENT_GET_CHATS, chats)

    async def on_subscriber_disconnected(self, subscriber: Hashable) -> None:
        logger.info("Client disconnected: %s", subscriber)

    async def on_fetch_history(self, subscriber: Hashable, chat_id: str) -> None:
        """Reply to one subscriber with every message of ``chat_id``."""
        logger.debug("get_chat_messages client=%s chat_id=%s", subscriber, chat_id)
        messages = _payload(self.store.list_messages(chat_id))
        await self.broadcast.emit_to_one(subscriber, EVENT_GET_CHAT_MESSAGES, messages)

    async def on_send_request(self, subscriber: Hashable, chat_id: str, text: str) -> None:
        """Forward an operator reply to Telegram, then record and broadcast it.

        Nothing is stored or broadcast unless Telegram accepted the message.
        Failures are reported to the requesting subscriber only.
        """
        logger.debug("handle_send_message client=%s chat_id=%s", subscriber, chat_id)
        async with flow_timing("bot_message", chat_id) as timer:
            if not self.outbound.is_bound:
                logger.error("Outbound sender not bound")
                timer.mark_status("not_ready")
                await self._report_error(subscriber, ERROR_BOT_NOT_INITIALIZED)
                return

            try:
                await self.outbound.send(chat_id, text)
            except OutboundNotReadyError:
                # Unbound between the check and the send
                logger.error("Outbound sender not bound")
                timer.mark_status("not_ready")
                await self._report_error(subscriber, ERROR_BOT_NOT_INITIALIZED)
                return
            except Exception as e:  # noqa: BLE001
                logger.error("Failed to send message to Telegram chat_id=%s: %s", chat_id, e)
                timer.mark_status("delivery_failed", detail=str(e))
                await self._report_error(subscriber, ERROR_SEND_FAILED)
                return

            message = Message.from_bot(chat_id=chat_id, text=text)
            with self.store.atomic():
                self.store.append_message(message)
                messages = _payload(self.store.list_messages(chat_id))
            await self.broadcast.emit_to_all(EVENT_MESSAGE_FROM_BOT, messages)

    async def _report_error(self, subscriber: Hashable, message: str) -> None:
        await self.broadcast.emit_to_one(subscriber, EVENT_ERROR, {"message": message})
