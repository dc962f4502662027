import asyncio
import json

import httpx
import pytest

import host_bridge
from figma_relay import create_app
from host_bridge import FigmaHostBridge, PollingHostBridge, answer_request, build_event


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def get_selection(params):
    return {"selection": [], "depth": params.get("depth")}


async def explode(params):
    raise RuntimeError("Node not found: 1:2")


HANDLERS = {"get_selection": get_selection, "delete_node": explode}


class FakeRelaySocket:
    """Client-side websocket double; ``None`` in the inbox ends the connection."""

    def __init__(self):
        self.sent = []
        self.inbox = asyncio.Queue()
        self.closed = False

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def recv(self):
        item = await self.inbox.get()
        if item is None:
            raise ConnectionError("connection closed")
        return item

    async def ping(self):
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_result(None)
        return waiter

    async def close(self):
        self.closed = True


class TestAnswerRequest:
    @pytest.mark.asyncio
    async def test_result_reply(self):
        reply = await answer_request(HANDLERS, {"id": "1", "method": "get_selection", "params": {"depth": 2}})
        assert reply == {"type": "response", "id": "1", "result": {"selection": [], "depth": 2}}

    @pytest.mark.asyncio
    async def test_handler_error_reply(self):
        reply = await answer_request(HANDLERS, {"id": "2", "method": "delete_node"})
        assert reply == {"type": "response", "id": "2", "error": {"message": "Node not found: 1:2"}}

    @pytest.mark.asyncio
    async def test_unknown_method_reply(self):
        reply = await answer_request(HANDLERS, {"id": "3", "method": "teleport"})
        assert reply["error"] == {"message": "Unknown method: teleport"}


def test_build_event():
    message = build_event("selectionchange", {"ids": []}, channel="review")
    assert message["type"] == "event"
    assert message["channel"] == "review"
    assert message["timestamp"] > 0
    assert "channel" not in build_event("documentchange")


class TestPollingHostBridge:
    @pytest.mark.asyncio
    async def test_answers_queued_request(self, context):
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_app(context)), base_url="http://relay")
        bridge = PollingHostBridge("http://relay", HANDLERS, client=client)

        assert await bridge.poll_once() is False

        call = asyncio.create_task(context.forward("get_selection", {"depth": 1}))
        await settle()
        assert await bridge.poll_once() is True
        assert await asyncio.wait_for(call, 1) == {"selection": [], "depth": 1}
        await bridge.shutdown()

    @pytest.mark.asyncio
    async def test_handler_error_reaches_caller(self, context):
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_app(context)), base_url="http://relay")
        bridge = PollingHostBridge("http://relay", HANDLERS, client=client)

        call = asyncio.create_task(context.forward("delete_node", {"nodeId": "1:2"}))
        await settle()
        await bridge.poll_once()
        with pytest.raises(Exception, match="Node not found: 1:2"):
            await asyncio.wait_for(call, 1)
        await bridge.shutdown()

    @pytest.mark.asyncio
    async def test_emit_event(self, context):
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=create_app(context)), base_url="http://relay")
        bridge = PollingHostBridge("http://relay", HANDLERS, client=client)

        await bridge.emit_event("selectionchange", {"ids": ["1:2"]}, channel="review")
        event = context.events.snapshot()[0]
        assert (event.event, event.channel, event.payload) == ("selectionchange", "review", {"ids": ["1:2"]})
        await bridge.shutdown()


class TestFigmaHostBridge:
    @pytest.mark.asyncio
    async def test_connect_and_answer_requests(self, monkeypatch):
        socket = FakeRelaySocket()

        async def fake_connect(url, **kwargs):
            assert url == "ws://relay/"
            return socket

        monkeypatch.setattr(host_bridge.websockets, "connect", fake_connect)
        bridge = FigmaHostBridge("ws://relay/", HANDLERS, keep_alive_interval=60)
        bridge.reconnect_delay = 8

        assert await bridge.connect() is True
        assert bridge.reconnect_delay == 1
        listening = asyncio.create_task(bridge.listen())

        await socket.inbox.put(json.dumps({"type": "ready", "server": "figma-relay", "version": "0.1.0", "connectionId": 4}))
        await socket.inbox.put(json.dumps({"type": "request", "id": "r1", "method": "get_selection", "params": {}}))
        await settle()

        assert bridge.connection_id == 4
        assert socket.sent == [{"type": "response", "id": "r1", "result": {"selection": [], "depth": None}}]

        await bridge.emit_event("documentchange", {"changes": 1})
        assert socket.sent[-1]["event"] == "documentchange"

        await socket.inbox.put(None)
        await asyncio.wait_for(listening, 1)
        assert bridge.websocket is None
        await bridge.shutdown()

    @pytest.mark.asyncio
    async def test_failed_connect(self, monkeypatch):
        async def refuse(url, **kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(host_bridge.websockets, "connect", refuse)
        bridge = FigmaHostBridge("ws://relay/", HANDLERS)

        assert await bridge.connect() is False
        assert bridge.websocket is None

    @pytest.mark.asyncio
    async def test_emit_without_connection(self):
        bridge = FigmaHostBridge("ws://relay/", HANDLERS)
        with pytest.raises(RuntimeError):
            await bridge.emit_event("selectionchange")

    @pytest.mark.asyncio
    async def test_shutdown_closes_socket(self):
        socket = FakeRelaySocket()
        bridge = FigmaHostBridge("ws://relay/", HANDLERS)
        bridge.websocket = socket

        await bridge.shutdown()
        assert socket.closed
        assert bridge.running is False
