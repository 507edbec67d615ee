"""WebSocket push transport for operator clients.

Frames are JSON text messages shaped ``{"event": <name>, "data": <payload>}``
in both directions. Each connection gets its own send queue drained by a
sender task. A client whose queue fills up is disconnected.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Optional

from aiohttp import WSCloseCode, WSMsgType, web

from relay.dispatch import EVENT_ERROR, EVENT_GET_CHAT_MESSAGES, Relay
from relay.ports import BroadcastPort

logger = logging.getLogger(__name__)

EVENT_SEND_MESSAGE = "send_message"
EVENT_PING = "ping"
EVENT_PONG = "pong"

ERROR_INVALID_PAYLOAD = "Invalid payload"
ERROR_INTERNAL = "Internal error"

DEFAULT_SEND_QUEUE_MAX = 100


@dataclass(eq=False)
class Subscriber:
    """A connected WebSocket client."""

    ws: web.WebSocketResponse
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __str__(self) -> str:
        return self.id


class FrameError(ValueError):
    """Raised when a client frame cannot be dispatched."""


class SocketGateway(BroadcastPort):
    """Per-process registry of WebSocket subscribers."""

    def __init__(self, send_queue_max: int = DEFAULT_SEND_QUEUE_MAX) -> None:
        self._send_queue_max = max(1, send_queue_max)
        self._queues: Dict[Subscriber, asyncio.Queue] = {}
        self._sender_tasks: Dict[Subscriber, asyncio.Task] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def add(self, ws: web.WebSocketResponse) -> Subscriber:
        subscriber = Subscriber(ws=ws)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._send_queue_max)
        self._queues[subscriber] = queue
        self._sender_tasks[subscriber] = asyncio.create_task(
            self._sender_loop(subscriber, queue)
        )
        logger.debug("ws_connected subscriber=%s total=%d", subscriber, len(self._queues))
        return subscriber

    async def remove(self, subscriber: Subscriber) -> None:
        self._queues.pop(subscriber, None)
        task = self._sender_tasks.pop(subscriber, None)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # noqa: BLE001
                logger.error("ws_sender_failed subscriber=%s error=%s", subscriber, exc, exc_info=True)
        logger.debug("ws_disconnected subscriber=%s total=%d", subscriber, len(self._queues))

    async def close_all(self) -> None:
        """Close every open socket, used at server shutdown."""
        for subscriber in list(self._queues):
            await subscriber.ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
            await self.remove(subscriber)

    async def emit_to_all(self, event: str, payload: Any) -> None:
        frame = {"event": event, "data": payload}
        targets = list(self._queues)
        logger.debug("broadcast event=%s subscribers=%d", event, len(targets))
        for subscriber in targets:
            await self._enqueue(subscriber, frame)

    async def emit_to_one(self, subscriber: Hashable, event: str, payload: Any) -> None:
        await self._enqueue(subscriber, {"event": event, "data": payload})

    async def _enqueue(self, subscriber: Hashable, frame: Dict[str, Any]) -> None:
        queue = self._queues.get(subscriber)
        if queue is None:
            # Subscriber already gone
            return
        try:
            queue.put_nowait(frame)
        except asyncio.QueueFull:
            # Queued replies may be meant for this subscriber only, so none are dropped
            logger.warning(
                "ws_send_queue_disconnect subscriber=%s event=%s", subscriber, frame["event"]
            )
            await self._disconnect(subscriber)

    async def _disconnect(self, subscriber: Subscriber) -> None:
        await self.remove(subscriber)
        try:
            await subscriber.ws.close(
                code=WSCloseCode.TRY_AGAIN_LATER, message=b"Send queue full"
            )
        except (ConnectionError, RuntimeError) as exc:
            logger.warning("ws_close_failed subscriber=%s error=%s", subscriber, exc)

    async def _sender_loop(self, subscriber: Subscriber, queue: asyncio.Queue) -> None:
        while True:
            frame = await queue.get()
            if subscriber.ws.closed:
                continue
            try:
                await subscriber.ws.send_json(frame)
            except (ConnectionError, RuntimeError) as exc:
                logger.warning("ws_send_failed subscriber=%s error=%s", subscriber, exc)


RELAY_KEY = web.AppKey("relay", Relay)
GATEWAY_KEY = web.AppKey("gateway", SocketGateway)
HEARTBEAT_KEY = web.AppKey("heartbeat", object)


def _parse_frame(raw: str) -> tuple[str, Any]:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameError(ERROR_INVALID_PAYLOAD) from exc
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise FrameError(ERROR_INVALID_PAYLOAD)
    return frame["event"], frame.get("data")


def _require_chat_id(data: Any) -> str:
    if not isinstance(data, dict):
        raise FrameError(ERROR_INVALID_PAYLOAD)
    chat_id = data.get("chatId")
    # Browser clients may send numeric Telegram ids
    if isinstance(chat_id, int) and not isinstance(chat_id, bool):
        chat_id = str(chat_id)
    if not isinstance(chat_id, str) or not chat_id.strip():
        raise FrameError(ERROR_INVALID_PAYLOAD)
    return chat_id.strip()


def _require_text(data: Any) -> str:
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        raise FrameError(ERROR_INVALID_PAYLOAD)
    return text


async def dispatch_frame(
    relay: Relay, gateway: SocketGateway, subscriber: Subscriber, raw: str
) -> None:
    """Route one client frame to the relay."""
    try:
        event, data = _parse_frame(raw)
        if event == EVENT_GET_CHAT_MESSAGES:
            await relay.on_fetch_history(subscriber, _require_chat_id(data))
        elif event == EVENT_SEND_MESSAGE:
            chat_id = _require_chat_id(data)
            await relay.on_send_request(subscriber, chat_id, _require_text(data))
        elif event == EVENT_PING:
            await gateway.emit_to_one(subscriber, EVENT_PONG, None)
        else:
            raise FrameError(f"Unknown event: {event}")
    except FrameError as e:
        logger.warning("Rejected frame from %s: %s", subscriber, e)
        await gateway.emit_to_one(subscriber, EVENT_ERROR, {"message": str(e)})
    except Exception as e:  # noqa: BLE001
        logger.error("Error handling frame from %s: %s", subscriber, e, exc_info=True)
        await gateway.emit_to_one(subscriber, EVENT_ERROR, {"message": ERROR_INTERNAL})


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    relay = request.app[RELAY_KEY]
    gateway = request.app[GATEWAY_KEY]

    ws = web.WebSocketResponse(heartbeat=request.app[HEARTBEAT_KEY])
    await ws.prepare(request)

    subscriber = gateway.add(ws)
    try:
        await relay.on_subscriber_connected(subscriber)
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await dispatch_frame(relay, gateway, subscriber, msg.data)
            elif msg.type == WSMsgType.BINARY:
                logger.warning("Ignoring binary frame from %s", subscriber)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("ws_error subscriber=%s error=%s", subscriber, ws.exception())
    finally:
        await gateway.remove(subscriber)
        await relay.on_subscriber_disconnected(subscriber)
    return ws


async def health_handler(request: web.Request) -> web.Response:
    relay = request.app[RELAY_KEY]
    gateway = request.app[GATEWAY_KEY]
    return web.json_response(
        {
            "status": "ok",
            "bot": relay.outbound.is_bound,
            "subscribers": gateway.subscriber_count,
            "chats": relay.store.chat_count(),
            "messages": relay.store.message_count(),
        }
    )


def create_app(
    relay: Relay,
    gateway: SocketGateway,
    ws_path: str = "/ws",
    heartbeat: Optional[float] = None,
) -> web.Application:
    """Build the aiohttp application serving the WebSocket endpoint."""
    app = web.Application()
    app[RELAY_KEY] = relay
    app[GATEWAY_KEY] = gateway
    app[HEARTBEAT_KEY] = heartbeat
    app.router.add_get(ws_path, websocket_handler)
    app.router.add_get("/health", health_handler)

    async def on_shutdown(_app: web.Application) -> None:
        await gateway.close_all()

    app.on_shutdown.append(on_shutdown)
    return app


class SocketServer:
    """Runs the aiohttp application on the bot's event loop."""

    def __init__(self, app: web.Application, host: str, port: int) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("WebSocket server listening on ws://%s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("WebSocket server stopped")
