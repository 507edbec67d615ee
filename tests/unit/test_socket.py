"""Tests for the WebSocket push transport."""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from aiohttp import WSCloseCode, web
from aiohttp.test_utils import AioHTTPTestCase

from relay.dispatch import ERROR_BOT_NOT_INITIALIZED, Relay
from relay.handlers.socket import SocketGateway, create_app
from relay.ports import OutboundPort
from relay.store import ChatInfo, Message, MessageStore


class SocketTestCase(AioHTTPTestCase):

    async def get_application(self):
        self.store = MessageStore()
        self.outbound = OutboundPort()
        self.gateway = SocketGateway()
        self.relay = Relay(self.store, self.outbound, self.gateway)
        return create_app(self.relay, self.gateway, ws_path="/ws")

    async def connect(self):
        ws = await self.client.ws_connect("/ws")
        frame = await ws.receive_json(timeout=5)
        self.assertEqual(frame["event"], "get_chats")
        return ws, frame


class TestConnection(SocketTestCase):

    async def test_connect_receives_chat_snapshot(self):
        self.store.upsert_chat(ChatInfo(chat_id="42", username="alice"))

        ws, frame = await self.connect()

        self.assertEqual(frame["data"], [{"chatId": "42", "username": "alice"}])
        await ws.close()

    async def test_connect_sends_chats_only_to_new_subscriber(self):
        self.store.upsert_chat(ChatInfo(chat_id="42"))
        first, _ = await self.connect()

        second, frame = await self.connect()
        self.assertEqual(frame["data"], [{"chatId": "42"}])

        # Anything queued for the first client would arrive before this pong
        await first.send_json({"event": "ping"})
        self.assertEqual(await first.receive_json(timeout=5), {"event": "pong", "data": None})
        await first.close()
        await second.close()

    async def test_ping_pong(self):
        ws, _ = await self.connect()

        await ws.send_json({"event": "ping"})

        self.assertEqual(await ws.receive_json(timeout=5), {"event": "pong", "data": None})
        await ws.close()

    async def test_health(self):
        self.store.append_message(Message.from_user("42", "hi"))
        ws, _ = await self.connect()

        resp = await self.client.get("/health")

        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertEqual(body["status"], "ok")
        self.assertFalse(body["bot"])
        self.assertEqual(body["subscribers"], 1)
        self.assertEqual(body["messages"], 1)
        await ws.close()


class TestClientEvents(SocketTestCase):

    async def test_fetch_history(self):
        message = Message.from_user("42", "hi")
        self.store.append_message(message)
        ws, _ = await self.connect()

        await ws.send_json({"event": "get_chat_messages", "data": {"chatId": "42"}})

        frame = await ws.receive_json(timeout=5)
        self.assertEqual(frame["event"], "get_chat_messages")
        self.assertEqual(frame["data"], [message.to_payload()])
        await ws.close()

    async def test_fetch_history_accepts_numeric_chat_id(self):
        ws, _ = await self.connect()

        await ws.send_json({"event": "get_chat_messages", "data": {"chatId": 42}})

        frame = await ws.receive_json(timeout=5)
        self.assertEqual(frame, {"event": "get_chat_messages", "data": []})
        await ws.close()

    async def test_send_without_bot_reports_error(self):
        ws, _ = await self.connect()

        await ws.send_json({"event": "send_message", "data": {"chatId": "42", "text": "hello"}})

        frame = await ws.receive_json(timeout=5)
        self.assertEqual(frame, {"event": "error", "data": {"message": ERROR_BOT_NOT_INITIALIZED}})
        self.assertEqual(self.store.message_count(), 0)
        await ws.close()

    async def test_send_broadcasts_to_every_subscriber(self):
        sender = AsyncMock()
        self.outbound.bind(sender)
        first, _ = await self.connect()
        second, _ = await self.connect()

        await first.send_json({"event": "send_message", "data": {"chatId": "42", "text": "hello"}})

        for ws in (first, second):
            frame = await ws.receive_json(timeout=5)
            self.assertEqual(frame["event"], "message_from_bot")
            self.assertEqual([m["text"] for m in frame["data"]], ["hello"])
            self.assertEqual(frame["data"][0]["from"], "bot")
        sender.assert_awaited_once_with("42", "hello")
        await first.close()
        await second.close()

    async def test_bot_message_reaches_subscribers(self):
        ws, _ = await self.connect()

        await self.relay.on_text_message("42", "hi", username="alice")

        frame = await ws.receive_json(timeout=5)
        self.assertEqual(frame["event"], "message_from_user")
        self.assertEqual(frame["data"][0]["username"], "alice")
        await ws.close()

    async def test_invalid_json_keeps_connection_open(self):
        ws, _ = await self.connect()

        await ws.send_str("not json")
        frame = await ws.receive_json(timeout=5)
        self.assertEqual(frame, {"event": "error", "data": {"message": "Invalid payload"}})

        await ws.send_json({"event": "ping"})
        self.assertEqual((await ws.receive_json(timeout=5))["event"], "pong")
        await ws.close()

    async def test_missing_text_rejected(self):
        ws, _ = await self.connect()

        await ws.send_json({"event": "send_message", "data": {"chatId": "42", "text": ""}})

        frame = await ws.receive_json(timeout=5)
        self.assertEqual(frame["event"], "error")
        self.assertEqual(frame["data"]["message"], "Invalid payload")
        await ws.close()

    async def test_unknown_event(self):
        ws, _ = await self.connect()

        await ws.send_json({"event": "delete_chat", "data": {"chatId": "42"}})

        frame = await ws.receive_json(timeout=5)
        self.assertEqual(frame["data"]["message"], "Unknown event: delete_chat")
        await ws.close()


async def _wait_until(condition, timeout=5):
    async def poll():
        while not condition():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


def _fake_ws(send_json):
    ws = MagicMock(spec=web.WebSocketResponse)
    ws.closed = False
    ws.send_json = AsyncMock(side_effect=send_json)
    ws.close = AsyncMock()
    return ws


class TestGateway(unittest.IsolatedAsyncioTestCase):

    async def test_emit_to_unknown_subscriber_is_ignored(self):
        gateway = SocketGateway()
        await gateway.emit_to_one(object(), "get_chats", [])
        self.assertEqual(gateway.subscriber_count, 0)

    async def test_queued_frames_delivered_in_order(self):
        release = asyncio.Event()
        sent = []

        async def send_json(frame):
            await release.wait()
            sent.append(frame["event"])

        gateway = SocketGateway(send_queue_max=4)
        subscriber = gateway.add(_fake_ws(send_json))

        await gateway.emit_to_all("message_from_user", [{"chatId": "1"}])
        await gateway.emit_to_one(subscriber, "error", {"message": "Bot not initialized"})
        await gateway.emit_to_all("message_from_user", [{"chatId": "2"}])
        await gateway.emit_to_all("new_chat", [])
        release.set()
        await _wait_until(lambda: len(sent) == 4)

        self.assertEqual(sent, ["message_from_user", "error", "message_from_user", "new_chat"])
        await gateway.remove(subscriber)

    async def test_full_queue_disconnects_instead_of_dropping_frames(self):
        release = asyncio.Event()

        async def send_json(frame):
            await release.wait()

        gateway = SocketGateway(send_queue_max=2)
        ws = _fake_ws(send_json)
        subscriber = gateway.add(ws)

        await gateway.emit_to_all("message_from_user", [{"chatId": "1"}])
        await gateway.emit_to_one(subscriber, "error", {"message": "Bot not initialized"})
        await gateway.emit_to_all("message_from_user", [{"chatId": "2"}])
        await gateway.emit_to_all("new_chat", [])

        self.assertEqual(gateway.subscriber_count, 0)
        ws.close.assert_awaited_once_with(
            code=WSCloseCode.TRY_AGAIN_LATER, message=b"Send queue full"
        )
        release.set()

    async def test_remove_survives_crashed_sender(self):
        ws = _fake_ws(ValueError("unserializable frame"))
        gateway = SocketGateway()
        subscriber = gateway.add(ws)

        await gateway.emit_to_one(subscriber, "get_chats", [])
        await _wait_until(lambda: ws.send_json.await_count == 1)
        await asyncio.sleep(0)

        await gateway.remove(subscriber)

        self.assertEqual(gateway.subscriber_count, 0)
