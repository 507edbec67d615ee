"""Telegram to WebSocket operator relay."""

__version__ = "0.1.0"
