"""Exception types raised by the relay."""


class RelayError(Exception):
    """Base class for relay errors."""


class ConfigurationError(RelayError):
    """Raised when the process cannot start with the current configuration."""


class OutboundNotReadyError(RelayError):
    """Raised when no Telegram sender is bound to the outbound port."""


class OutboundDeliveryError(RelayError):
    """Raised when Telegram rejects an outbound message."""

    def __init__(self, chat_id: str, reason: str) -> None:
        super().__init__(f"Failed to deliver message to chat {chat_id}: {reason}")
        self.chat_id = chat_id
        self.reason = reason
