"""In-memory storage for messages and chat information."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from relay.store.models import ChatInfo, Message

logger = logging.getLogger(__name__)


class MessageStore:
    """Append-only message log and chat registry.

    Every operation runs under one re-entrant lock. Callers that need a write
    and a following read to observe the same state wrap both in ``atomic()``.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._messages: List[Message] = []
        self._chats: Dict[str, ChatInfo] = {}

    @contextmanager
    def atomic(self) -> Iterator["MessageStore"]:
        """Hold the store lock for the duration of the block.

        Usage:
            with store.atomic():
                store.append_message(message)
                snapshot = store.list_messages(message.chat_id)
        """
        with self._lock:
            yield self

    def append_message(self, message: Message) -> None:
        with self._lock:
            self._messages.append(message)
            count = len(self._messages)
        logger.debug("append_message chat_id=%s messages_count=%d", message.chat_id, count)

    def list_messages(self, chat_id: Optional[str] = None) -> List[Message]:
        """Return messages in insertion order, optionally for one chat.

        Args:
            chat_id: Restrict the result to this chat when given.

        Returns:
            A new list; empty when nothing matches.
        """
        with self._lock:
            if chat_id is None:
                return list(self._messages)
            return [m for m in self._messages if m.chat_id == chat_id]

    def list_messages_since(
        self, timestamp: int, chat_id: Optional[str] = None
    ) -> List[Message]:
        """Return messages strictly newer than ``timestamp``."""
        return [m for m in self.list_messages(chat_id) if m.timestamp > timestamp]

    def upsert_chat(self, chat: ChatInfo) -> None:
        """Insert the chat or replace the stored record for its chat id."""
        with self._lock:
            self._chats[chat.chat_id] = chat
            count = len(self._chats)
        logger.debug("upsert_chat chat_id=%s chats_count=%d", chat.chat_id, count)

    def list_chats(self) -> List[ChatInfo]:
        with self._lock:
            return list(self._chats.values())

    def get_chat(self, chat_id: str) -> Optional[ChatInfo]:
        with self._lock:
            return self._chats.get(chat_id)

    def message_count(self) -> int:
        with self._lock:
            return len(self._messages)

    def chat_count(self) -> int:
        with self._lock:
            return len(self._chats)
