"""
Figma Relay - server entry point.

Runs one HTTP/WebSocket server for the Figma plugin (push over WebSocket,
pull/push over plain HTTP) and exposes the tool catalog to agents through
the MCP stdio and/or streamable-HTTP front-ends. All front-ends share one
RelayContext.
"""

import asyncio
import contextlib
import itertools
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import uvicorn
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

import figma_prompts
from figma_communicator import MESSAGE_TYPE_EVENT, SocketTransport
from figma_config import SERVER_NAME, SERVER_VERSION, RelayConfig, load_config
from figma_dispatcher import RelayContext, ToolDispatcher
from figma_tools import TOOLS

logger = logging.getLogger(__name__)

MESSAGE_TYPE_READY = "ready"


class ToolCallError(Exception):
    """Raised inside the MCP handler so the SDK reports an isError result."""


def setup_logging(level: str = "INFO") -> None:
    # stdout belongs to the stdio MCP transport
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='[%(asctime)s] [relay] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S',
        stream=sys.stderr,
    )


# ============================================
# ============== MCP FRONT-END ===============
# ============================================

def create_mcp_server(dispatcher: ToolDispatcher) -> Server:
    """Build the MCP server publishing the tool catalog and prompts."""
    server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [
            types.Tool(name=tool.name, description=tool.description, inputSchema=tool.input_schema())
            for tool in TOOLS
        ]

    # Arguments are validated by the tool models, not by the SDK
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
        outcome = await dispatcher.dispatch(name, arguments)
        if not outcome.ok:
            raise ToolCallError(outcome.error)
        return [types.TextContent(type="text", text=outcome.to_text())]

    @server.list_prompts()
    async def list_prompts() -> List[types.Prompt]:
        return [
            types.Prompt(name=entry.name, description=entry.description, arguments=[])
            for entry in figma_prompts.PROMPT_CATALOG.values()
        ]

    @server.get_prompt()
    async def get_prompt(name: str, arguments: Optional[Dict[str, str]]) -> types.GetPromptResult:
        entry = figma_prompts.get_prompt(name)
        return types.GetPromptResult(
            description=entry.description,
            messages=[types.PromptMessage.model_validate(message) for message in entry.messages()],
        )

    return server


class StreamableHTTPEndpoint:
    """ASGI endpoint handing requests to the MCP session manager."""

    def __init__(self, session_manager: StreamableHTTPSessionManager) -> None:
        self.session_manager = session_manager

    async def __call__(self, scope, receive, send) -> None:
        await self.session_manager.handle_request(scope, receive, send)


async def serve_stdio(mcp_server: Server) -> None:
    async with stdio_server() as (read_stream, write_stream):
        logger.info("🧵 MCP server running on stdio")
        await mcp_server.run(read_stream, write_stream, mcp_server.create_initialization_options())


# ============================================
# ============ PLUGIN SURFACES ===============
# ============================================

async def serve_plugin_socket(context: RelayContext, websocket: WebSocket, connection_id: int) -> None:
    """Run one plugin WebSocket session until it closes."""
    await websocket.accept()
    connection = SocketTransport(
        websocket,
        connection_id,
        is_open=lambda: websocket.application_state == WebSocketState.CONNECTED
        and websocket.client_state == WebSocketState.CONNECTED,
    )
    context.communicator.attach_connection(connection)
    try:
        await websocket.send_text(json.dumps({
            "type": MESSAGE_TYPE_READY,
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "connectionId": connection_id,
        }))
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            # Plugins may send either text or binary frames
            raw_message = frame.get("text")
            if raw_message is None and frame.get("bytes") is not None:
                raw_message = frame["bytes"].decode("utf-8", errors="replace")
            if raw_message is None:
                continue
            try:
                message = json.loads(raw_message)
            except ValueError:
                logger.debug(f"Ignoring malformed message on connection {connection_id}")
                continue
            context.handle_socket_message(message)
    except WebSocketDisconnect:
        logger.debug(f"📡 Connection {connection_id} closed by plugin")
    finally:
        context.communicator.detach_connection(connection)


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body.strip():
        return {}
    return json.loads(body)


def create_app(
    context: RelayContext,
    session_manager: Optional[StreamableHTTPSessionManager] = None,
    mcp_path: str = "/mcp",
) -> Starlette:
    """Build the plugin-facing ASGI app, optionally with the MCP endpoint mounted."""
    connection_ids = itertools.count(1)

    async def pull(request: Request) -> Response:
        envelope = context.communicator.pull()
        if envelope is None:
            return Response(status_code=204)
        return JSONResponse(envelope)

    async def push(request: Request) -> Response:
        try:
            message = await _read_json(request)
        except ValueError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)
        routed = context.push(message)
        return JSONResponse({"ok": True, "routed": routed})

    async def event(request: Request) -> Response:
        try:
            message = await _read_json(request)
        except ValueError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)
        buffered = context.handle_event(message) if isinstance(message, dict) else None
        return JSONResponse({"ok": True, "routed": MESSAGE_TYPE_EVENT if buffered else None})

    async def health(request: Request) -> Response:
        return JSONResponse(context.health())

    async def plugin_socket(websocket: WebSocket) -> None:
        await serve_plugin_socket(context, websocket, next(connection_ids))

    routes = [
        Route("/pull", pull, methods=["GET"]),
        Route("/push", push, methods=["POST"]),
        Route("/event", event, methods=["POST"]),
        Route("/health", health, methods=["GET"]),
        WebSocketRoute("/", plugin_socket),
    ]

    lifespan = None
    if session_manager is not None:
        routes.append(Route(mcp_path, endpoint=StreamableHTTPEndpoint(session_manager)))

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette):
            async with session_manager.run():
                logger.info(f"🌐 MCP streamable HTTP endpoint at {mcp_path}")
                yield

    # The plugin UI runs in a null-origin iframe
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["Mcp-Session-Id"],
        ),
    ]

    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)


# ============================================
# ================= RUNNER ===================
# ============================================

async def run(config: RelayConfig) -> None:
    context = RelayContext(config)
    dispatcher = ToolDispatcher(context)
    mcp_server = create_mcp_server(dispatcher)

    session_manager = StreamableHTTPSessionManager(app=mcp_server) if config.mcp_http_enabled else None
    app = create_app(context, session_manager=session_manager, mcp_path=config.mcp_path)

    # log_config=None keeps uvicorn's access log off stdout
    http_server = uvicorn.Server(uvicorn.Config(app, host=config.host, port=config.port, log_config=None))
    logger.info(f"🌉 Plugin endpoints on http://{config.host}:{config.port} (ws://{config.host}:{config.port}/)")

    http_task = asyncio.create_task(http_server.serve())
    if not config.stdio_enabled:
        await http_task
        return

    stdio_task = asyncio.create_task(serve_stdio(mcp_server))
    done, _ = await asyncio.wait({http_task, stdio_task}, return_when=asyncio.FIRST_COMPLETED)
    if stdio_task in done:
        stdio_task.result()
        logger.info("🧵 stdio session ended")
        if not config.mcp_http_enabled:
            http_server.should_exit = True
        await http_task
    else:
        logger.info("🛑 HTTP server stopped, closing stdio session")
        stdio_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await stdio_task
        http_task.result()


def main() -> None:
    config = load_config(sys.argv[1:])
    setup_logging(config.log_level)

    logger.info(f"Starting {SERVER_NAME} {SERVER_VERSION}")
    logger.info(f"Transport: {config.transport}")
    logger.info(f"Request timeout: {config.request_timeout_ms}ms, event buffer: {config.max_events}")

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Relay interrupted")


if __name__ == "__main__":
    main()
