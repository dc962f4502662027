"""
Tests for the relay server surfaces.

Tests cover:
- Polling endpoints (/pull, /push, /event, /health)
- Plugin WebSocket sessions
- MCP tool and prompt handlers
"""

import asyncio
import json

import httpx
import pytest
from mcp import types
from starlette.testclient import TestClient
from starlette.websockets import WebSocketState

from figma_communicator import HostDisconnectedError
from figma_config import SERVER_NAME, SERVER_VERSION
from figma_relay import create_app, create_mcp_server, serve_plugin_socket


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def relay_client(context):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=create_app(context)), base_url="http://relay")


class FakePluginSocket:
    """Stands in for a Starlette WebSocket; ``None`` in the inbox closes it."""

    def __init__(self):
        self.application_state = WebSocketState.CONNECTING
        self.client_state = WebSocketState.CONNECTED
        self.sent = []
        self.inbox = asyncio.Queue()

    async def accept(self):
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, text):
        self.sent.append(json.loads(text))

    async def receive(self):
        item = await self.inbox.get()
        if item is None:
            self.client_state = WebSocketState.DISCONNECTED
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        return {"type": "websocket.receive", "text": item}


# ==================== Polling Endpoints ====================


class TestPollingEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, context):
        async with relay_client(context) as client:
            response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["connected"] is False
        assert (body["pending"], body["queued"], body["events"]) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_pull_with_nothing_pending(self, context):
        async with relay_client(context) as client:
            response = await client.get("/pull")
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_pull_then_push_reply(self, context):
        call = asyncio.create_task(context.forward("get_selection", {"depth": 0}))
        await settle()

        async with relay_client(context) as client:
            health = (await client.get("/health")).json()
            assert (health["pending"], health["queued"]) == (1, 1)

            envelope = (await client.get("/pull")).json()
            assert envelope["method"] == "get_selection"
            assert envelope["params"] == {"depth": 0}

            response = await client.post("/push", json={"type": "response", "id": envelope["id"], "result": ["1:2"]})
            assert response.status_code == 200
            assert response.json()["routed"] == "response"

        assert await asyncio.wait_for(call, 1) == ["1:2"]

    @pytest.mark.asyncio
    async def test_push_event_uses_active_channel(self, context):
        context.channels.join("review")
        async with relay_client(context) as client:
            response = await client.post("/push", json={"type": "event", "event": "selectionchange", "payload": {}})
        assert response.json()["routed"] == "event"
        assert context.events.snapshot()[0].channel == "review"

    @pytest.mark.asyncio
    async def test_event_endpoint(self, context):
        async with relay_client(context) as client:
            response = await client.post("/event", json={"event": "documentchange", "channel": "side"})
        assert response.status_code == 200
        assert context.events.snapshot()[0].channel == "side"

    @pytest.mark.asyncio
    async def test_malformed_body_rejected(self, context):
        async with relay_client(context) as client:
            response = await client.post("/push", content=b"{not json", headers={"content-type": "application/json"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_late_reply_is_accepted_and_dropped(self, context):
        async with relay_client(context) as client:
            response = await client.post("/push", json={"id": "long-gone", "result": 1})
        assert response.status_code == 200
        assert len(context.communicator.pending) == 0


# ==================== Plugin WebSocket ====================


class TestPluginSocket:
    @pytest.mark.asyncio
    async def test_ready_announcement_and_request_flow(self, context):
        socket = FakePluginSocket()
        session = asyncio.create_task(serve_plugin_socket(context, socket, 7))
        await settle()

        assert socket.sent[0] == {"type": "ready", "server": SERVER_NAME, "version": SERVER_VERSION, "connectionId": 7}
        assert context.communicator.connected

        call = asyncio.create_task(context.forward("get_page_tree", {}))
        await settle()
        request = socket.sent[1]
        assert request["type"] == "request"
        assert len(context.communicator.queue) == 0

        await socket.inbox.put("this is not json")
        await socket.inbox.put(json.dumps({"type": "event", "event": "selectionchange"}))
        await socket.inbox.put(json.dumps({"type": "response", "id": request["id"], "result": {"ok": True}}))
        assert await asyncio.wait_for(call, 1) == {"ok": True}
        assert len(context.events) == 1

        await socket.inbox.put(None)
        await asyncio.wait_for(session, 1)
        assert not context.communicator.connected

    @pytest.mark.asyncio
    async def test_disconnect_fails_pending_calls(self, context):
        socket = FakePluginSocket()
        session = asyncio.create_task(serve_plugin_socket(context, socket, 1))
        await settle()

        call = asyncio.create_task(context.forward("create_frame", {}))
        await settle()
        await socket.inbox.put(None)
        await asyncio.wait_for(session, 1)

        with pytest.raises(HostDisconnectedError):
            await call

    @pytest.mark.asyncio
    async def test_binary_frames_are_routed(self, context):
        socket = FakePluginSocket()
        session = asyncio.create_task(serve_plugin_socket(context, socket, 2))
        await settle()

        call = asyncio.create_task(context.forward("get_selection", {}))
        await settle()
        request = socket.sent[1]

        await socket.inbox.put(json.dumps({"type": "event", "event": "selectionchange"}).encode())
        await socket.inbox.put(b"\xff\xfe\x00")
        await socket.inbox.put(json.dumps({"type": "event", "event": "documentchange"}))
        await socket.inbox.put(json.dumps({"type": "response", "id": request["id"], "result": "ok"}).encode())
        assert await asyncio.wait_for(call, 1) == "ok"

        assert [event.event for event in context.events.snapshot()] == ["selectionchange", "documentchange"]
        assert context.communicator.connected
        assert not session.done()

        await socket.inbox.put(None)
        await asyncio.wait_for(session, 1)

    def test_binary_frame_over_real_socket(self, context):
        client = TestClient(create_app(context))
        with client.websocket_connect("/") as ws:
            assert ws.receive_json()["type"] == "ready"
            ws.send_bytes(json.dumps({"type": "event", "event": "selectionchange"}).encode())
            ws.send_text(json.dumps({"type": "event", "event": "documentchange"}))
            ws.send_text(json.dumps({"type": "event", "event": "currentpagechange"}))

        assert [event.event for event in context.events.snapshot()] == [
            "selectionchange",
            "documentchange",
            "currentpagechange",
        ]


# ==================== MCP Front-End ====================


class TestMcpServer:
    @pytest.mark.asyncio
    async def test_lists_catalog(self, dispatcher):
        server = create_mcp_server(dispatcher)
        result = await server.request_handlers[types.ListToolsRequest](types.ListToolsRequest(method="tools/list"))

        tools = {tool.name: tool for tool in result.root.tools}
        assert "batch_calls" in tools
        assert "nodeId" in tools["get_node_info"].inputSchema["properties"]

    @pytest.mark.asyncio
    async def test_call_tool_returns_pretty_json(self, dispatcher):
        server = create_mcp_server(dispatcher)
        request = types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name="list_channels", arguments={}),
        )
        result = await server.request_handlers[types.CallToolRequest](request)

        assert not result.root.isError
        text = result.root.content[0].text
        assert json.loads(text) == {"activeChannel": "default", "channels": ["default"], "counts": {}}
        assert text == json.dumps(json.loads(text), indent=2)

    @pytest.mark.asyncio
    async def test_call_tool_failure_is_error_result(self, dispatcher):
        server = create_mcp_server(dispatcher)
        request = types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name="join_channel", arguments={}),
        )
        result = await server.request_handlers[types.CallToolRequest](request)

        assert result.root.isError
        assert result.root.content[0].text.startswith("Invalid arguments for join_channel")

    @pytest.mark.asyncio
    async def test_prompts(self, dispatcher):
        server = create_mcp_server(dispatcher)
        listed = await server.request_handlers[types.ListPromptsRequest](types.ListPromptsRequest(method="prompts/list"))
        assert "design_strategy" in {prompt.name for prompt in listed.root.prompts}

        request = types.GetPromptRequest(method="prompts/get", params=types.GetPromptRequestParams(name="design_strategy"))
        prompt = await server.request_handlers[types.GetPromptRequest](request)
        message = prompt.root.messages[0]
        assert message.role == "user"
        assert "get_document_info" in message.content.text
