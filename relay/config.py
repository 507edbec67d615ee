"""Configuration module for the operator relay."""

import logging
import os
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from relay.errors import ConfigurationError

# Load environment variables from .env file
load_dotenv()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Timing logger for flow and outbound performance analysis
TIMING_LOGGER = logging.getLogger("relay.timing")

# Bot settings
# Bot token from BotFather
BOT_TOKEN = os.getenv("BOT_TOKEN")
START_GREETING = os.getenv(
    "START_GREETING",
    "Привет! Я бот. Напиши мне что-нибудь, и оператор ответит тебе.",
)
DROP_PENDING_UPDATES = os.getenv("DROP_PENDING_UPDATES", "true").lower() == "true"

# WebSocket push server settings
WS_HOST = os.getenv("WS_HOST", "0.0.0.0")
WS_PORT = os.getenv("WS_PORT", "8081")
WS_PATH = os.getenv("WS_PATH", "/ws")
WS_HEARTBEAT = os.getenv("WS_HEARTBEAT", "30")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    """Validated runtime settings."""

    bot_token: str
    ws_host: str
    ws_port: int
    ws_path: str
    ws_heartbeat: Optional[float]
    start_greeting: str
    drop_pending_updates: bool


def configure_logging(log_dir: str = LOG_DIR, level: str = LOG_LEVEL) -> None:
    """Configure console and daily rotating file logging.

    Args:
        log_dir: Directory for ``relay.log`` and ``timing.log``.
        level: Name of the root log level.
    """
    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove any existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    file_handler = TimedRotatingFileHandler(
        filename=logs_dir / "relay.log",
        when="midnight",
        interval=1,
        backupCount=30,  # Keep logs for 30 days
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # httpx logs every Telegram polling request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    timing_log_path = logs_dir / "timing.log"
    TIMING_LOGGER.setLevel(logging.INFO)
    TIMING_LOGGER.propagate = False
    if not any(
        isinstance(handler, TimedRotatingFileHandler)
        and Path(getattr(handler, "baseFilename", "")).resolve()
        == timing_log_path.resolve()
        for handler in TIMING_LOGGER.handlers
    ):
        timing_handler = TimedRotatingFileHandler(
            filename=timing_log_path,
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8",
        )
        timing_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
        )
        TIMING_LOGGER.addHandler(timing_handler)

    logger.info("Logging configured with daily rotation in %s", logs_dir)


def require_bot_token(token: Optional[str] = None) -> str:
    """Return the bot token or raise if it is not configured."""
    token = BOT_TOKEN if token is None else token
    if not token or not token.strip():
        logger.error("BOT_TOKEN is not defined")
        raise ConfigurationError("BOT_TOKEN environment variable is required")
    return token.strip()


def _parse_port(value: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"WS_PORT must be an integer, got {value!r}") from exc
    if not 0 < port < 65536:
        raise ConfigurationError(f"WS_PORT out of range: {port}")
    return port


def _parse_heartbeat(value: str) -> Optional[float]:
    try:
        heartbeat = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"WS_HEARTBEAT must be a number, got {value!r}"
        ) from exc
    # aiohttp disables heartbeats when given None
    return heartbeat if heartbeat > 0 else None


def load_settings() -> Settings:
    """Build validated settings from the environment.

    Raises:
        ConfigurationError: If a required value is missing or malformed.
    """
    ws_path = WS_PATH if WS_PATH.startswith("/") else f"/{WS_PATH}"
    return Settings(
        bot_token=require_bot_token(),
        ws_host=WS_HOST,
        ws_port=_parse_port(WS_PORT),
        ws_path=ws_path,
        ws_heartbeat=_parse_heartbeat(WS_HEARTBEAT),
        start_greeting=START_GREETING,
        drop_pending_updates=DROP_PENDING_UPDATES,
    )
