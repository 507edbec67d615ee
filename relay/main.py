"""Main entry point for the operator relay."""

import logging
import sys

from telegram.ext import Application

from relay.config import Settings, configure_logging, load_settings
from relay.dispatch import Relay
from relay.errors import ConfigurationError
from relay.handlers.socket import SocketGateway, SocketServer, create_app
from relay.handlers.telegram import make_telegram_sender, register_handlers
from relay.ports import OutboundPort
from relay.store import MessageStore

logger = logging.getLogger(__name__)


def build_application(settings: Settings) -> Application:
    """Wire the store, relay and both transports into a Telegram application."""
    store = MessageStore()
    outbound = OutboundPort()
    gateway = SocketGateway()
    relay = Relay(store, outbound, gateway)
    server = SocketServer(
        create_app(relay, gateway, ws_path=settings.ws_path, heartbeat=settings.ws_heartbeat),
        host=settings.ws_host,
        port=settings.ws_port,
    )

    async def post_init(application: Application) -> None:
        outbound.bind(make_telegram_sender(application.bot))
        logger.info("Outbound sender bound to @%s", application.bot.username)
        await server.start()
        logger.info("Post-initialization completed")

    async def post_shutdown(application: Application) -> None:  # noqa: ARG001
        outbound.unbind()
        await server.stop()
        logger.info("Telegram bot stopped")

    application = (
        Application.builder()
        .token(settings.bot_token)
        .concurrent_updates(True)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )
    register_handlers(application, relay, greeting=settings.start_greeting)
    return application


def main():
    """Main function to run the relay."""
    configure_logging()
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    application = build_application(settings)

    logger.info("Starting bot with polling")
    application.run_polling(drop_pending_updates=settings.drop_pending_updates)


if __name__ == "__main__":
    try:
        main()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Relay stopped")
        raise
    except Exception as e:
        logger.error(f"Unhandled exception: {e}", exc_info=True)
        sys.exit(1)
