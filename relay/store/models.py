"""Data models for messages and chats held by the relay."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

SENDER_USER = "user"
SENDER_BOT = "bot"


def now_ms() -> int:
    """Return the current wall-clock time in milliseconds since epoch."""
    return int(time.time() * 1000)


def new_message_id() -> str:
    return str(uuid.uuid4())


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class Message:
    """A single message in a chat, from either the Telegram user or the bot."""

    chat_id: str
    text: str
    sender: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    id: str = field(default_factory=new_message_id)
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        if self.sender not in (SENDER_USER, SENDER_BOT):
            raise ValueError(f"Unknown message sender: {self.sender!r}")

    @classmethod
    def from_user(
        cls,
        chat_id: str,
        text: str,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> "Message":
        return cls(
            chat_id=chat_id,
            text=text,
            sender=SENDER_USER,
            username=username,
            first_name=first_name,
        )

    @classmethod
    def from_bot(cls, chat_id: str, text: str) -> "Message":
        return cls(chat_id=chat_id, text=text, sender=SENDER_BOT)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the camelCase shape sent to WebSocket clients."""
        return _compact(
            {
                "id": self.id,
                "chatId": self.chat_id,
                "text": self.text,
                "from": self.sender,
                "username": self.username,
                "firstName": self.first_name,
                "timestamp": self.timestamp,
            }
        )


@dataclass(frozen=True)
class ChatInfo:
    """Identity of a Telegram chat as last seen by the bot."""

    chat_id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return _compact(
            {
                "chatId": self.chat_id,
                "username": self.username,
                "firstName": self.first_name,
                "lastName": self.last_name,
            }
        )
