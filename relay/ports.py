"""Ports connecting the relay to the Telegram and WebSocket transports."""
from __future__ import annotations

import abc
import logging
from typing import Any, Awaitable, Callable, Hashable, Optional

from relay.errors import OutboundNotReadyError

logger = logging.getLogger(__name__)

Sender = Callable[[str, str], Awaitable[None]]


class OutboundPort:
    """Single slot holding the function that delivers text to Telegram.

    The relay is built with an empty port; the bot adapter binds its sender
    once the Telegram application has been initialized.
    """

    def __init__(self, sender: Optional[Sender] = None) -> None:
        self._sender = sender

    @property
    def is_bound(self) -> bool:
        return self._sender is not None

    def bind(self, sender: Sender) -> None:
        """Bind ``sender``, replacing any previously bound one."""
        if self._sender is not None:
            logger.info("Replacing bound outbound sender")
        self._sender = sender

    def unbind(self) -> None:
        self._sender = None

    async def send(self, chat_id: str, text: str) -> None:
        """Deliver ``text`` to ``chat_id`` through the bound sender.

        Raises:
            OutboundNotReadyError: If no sender is bound.
        """
        sender = self._sender
        if sender is None:
            raise OutboundNotReadyError("Outbound sender is not bound")
        await sender(chat_id, text)


class BroadcastPort(abc.ABC):
    """Emits events to connected subscribers.

    Delivery is best-effort: a subscriber that has gone away simply misses
    the event.
    """

    @abc.abstractmethod
    async def emit_to_all(self, event: str, payload: Any) -> None:
        """Send ``event`` with ``payload`` to every connected subscriber."""

    @abc.abstractmethod
    async def emit_to_one(self, subscriber: Hashable, event: str, payload: Any) -> None:
        """Send ``event`` with ``payload`` to a single subscriber."""
