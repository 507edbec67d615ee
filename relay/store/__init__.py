"""Storage package for the operator relay."""

from relay.store.memory import MessageStore
from relay.store.models import SENDER_BOT, SENDER_USER, ChatInfo, Message

__all__ = [
    "SENDER_BOT",
    "SENDER_USER",
    "ChatInfo",
    "Message",
    "MessageStore",
]
