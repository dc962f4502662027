"""
Host bridge clients.

Python stand-ins for the Figma plugin side of the relay: they receive
request envelopes, answer them from a table of async method handlers and
emit events. FigmaHostBridge holds a WebSocket open to the relay and
reconnects with exponential backoff; PollingHostBridge pulls requests over
plain HTTP. Useful for headless hosts and smoke tests.
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import websockets

from figma_communicator import MESSAGE_TYPE_EVENT, MESSAGE_TYPE_REQUEST, MESSAGE_TYPE_RESPONSE

logger = logging.getLogger(__name__)

MESSAGE_TYPE_READY = "ready"

MethodHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


async def answer_request(handlers: Dict[str, MethodHandler], envelope: Dict[str, Any]) -> Dict[str, Any]:
    """Run the handler for a request envelope and build the response message."""
    request_id = envelope.get("id")
    method = envelope.get("method")
    params = envelope.get("params") or {}
    handler = handlers.get(method) if isinstance(method, str) else None
    try:
        if handler is None:
            raise LookupError(f"Unknown method: {method}")
        result = await handler(params)
    except Exception as e:
        logger.warning(f"⚠️ Handler for {method} (ID: {request_id}) failed: {e}")
        return {"type": MESSAGE_TYPE_RESPONSE, "id": request_id, "error": {"message": str(e) or e.__class__.__name__}}
    return {"type": MESSAGE_TYPE_RESPONSE, "id": request_id, "result": result}


def build_event(event: str, payload: Any = None, channel: Optional[str] = None) -> Dict[str, Any]:
    message = {
        "type": MESSAGE_TYPE_EVENT,
        "event": event,
        "payload": payload,
        "timestamp": int(time.time() * 1000),
    }
    if channel:
        message["channel"] = channel
    return message


class FigmaHostBridge:
    """WebSocket host client with keep-alive and reconnect."""

    def __init__(self, relay_url: str, handlers: Dict[str, MethodHandler], keep_alive_interval: float = 30):
        self.relay_url = relay_url
        self.handlers = handlers
        self.websocket = None
        self.connection_id: Optional[int] = None
        self.running = True
        self.reconnect_delay = 1  # Start with 1 second
        self.max_reconnect_delay = 30  # Max 30 seconds
        self.keep_alive_interval = keep_alive_interval
        self._keep_alive_task: Optional[asyncio.Task] = None
        self._background_tasks: set[asyncio.Task] = set()

    async def _send_json(self, payload: Dict[str, Any]) -> None:
        """Safely send a JSON-serializable payload over the websocket if connected."""
        if not self.websocket:
            raise RuntimeError("WebSocket not connected")
        await self.websocket.send(json.dumps(payload))

    async def connect(self) -> bool:
        """Connect to the relay"""
        try:
            logger.info(f"Connecting to relay at {self.relay_url}")
            # Remove size limits to allow large exports over WS
            self.websocket = await websockets.connect(self.relay_url, max_size=None)
            self._keep_alive_task = asyncio.create_task(self._websocket_keep_alive(self.keep_alive_interval))
            logger.info("💓 Started WebSocket keep-alive mechanism")
            # Reset reconnect delay on successful connection
            self.reconnect_delay = 1
            return True
        except Exception as e:
            logger.error(f"Failed to connect: {e}")
            return False

    async def handle_message(self, message: Dict[str, Any]) -> None:
        msg_type = message.get("type")
        if msg_type == MESSAGE_TYPE_READY:
            self.connection_id = message.get("connectionId")
            logger.info(f"🌉 Relay ready ({message.get('server')} {message.get('version')}), connection {self.connection_id}")
        elif msg_type == MESSAGE_TYPE_REQUEST:
            task = asyncio.create_task(self._handle_request(message))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
        else:
            logger.debug(f"Ignoring message type: {msg_type}")

    async def _handle_request(self, envelope: Dict[str, Any]) -> None:
        logger.info(f"📨 Request {envelope.get('method')} (ID: {envelope.get('id')})")
        reply = await answer_request(self.handlers, envelope)
        try:
            await self._send_json(reply)
        except Exception as e:
            logger.error(f"❌ Failed to send reply for {envelope.get('id')}: {e}")

    async def emit_event(self, event: str, payload: Any = None, channel: Optional[str] = None) -> None:
        await self._send_json(build_event(event, payload, channel))

    async def listen(self) -> None:
        """Listen for messages from the relay"""
        logger.info("🎧 Starting to listen for messages from relay")
        while self.running and self.websocket:
            try:
                raw_message = await self.websocket.recv()
            except asyncio.CancelledError:
                logger.info("🛑 Listen loop cancelled")
                raise
            except Exception as e:
                logger.error(f"❌ Error receiving message: {e}")
                break

            try:
                message = json.loads(raw_message)
            except ValueError as e:
                logger.error(f"❌ Failed to decode message: {e}")
                continue
            if isinstance(message, dict):
                await self.handle_message(message)

        self._stop_keep_alive()
        self.websocket = None

    async def _websocket_keep_alive(self, interval: float = 30) -> None:
        """Keep WebSocket connection alive with periodic pings"""
        try:
            while self.running and self.websocket:
                await asyncio.sleep(interval)
                if not self.websocket:
                    break
                try:
                    pong_waiter = await self.websocket.ping()
                    await asyncio.wait_for(pong_waiter, timeout=10)
                    logger.debug("💓 WebSocket keep-alive ping successful")
                except asyncio.TimeoutError:
                    logger.warning("💔 WebSocket keep-alive ping timed out")
                    break
                except Exception as e:
                    logger.error(f"💔 WebSocket keep-alive ping failed: {e}")
                    break
        except asyncio.CancelledError:
            logger.debug("💓 WebSocket keep-alive task cancelled")

    def _stop_keep_alive(self) -> None:
        if self._keep_alive_task and not self._keep_alive_task.done():
            self._keep_alive_task.cancel()
        self._keep_alive_task = None

    async def run_with_reconnect(self) -> None:
        """Main loop with reconnection logic"""
        while self.running:
            if await self.connect():
                logger.info("🌉 Connected to relay successfully")
                await self.listen()
            else:
                logger.warning("Failed to connect to relay")

            if self.running:
                logger.info(f"Reconnecting in {self.reconnect_delay} seconds...")
                await asyncio.sleep(self.reconnect_delay)
                # Exponential backoff up to max delay
                self.reconnect_delay = min(self.reconnect_delay * 2, self.max_reconnect_delay)

    async def shutdown(self) -> None:
        """Graceful shutdown"""
        logger.info("Shutting down host bridge")
        self.running = False
        self._stop_keep_alive()
        for task in list(self._background_tasks):
            task.cancel()
        if self.websocket:
            try:
                await self.websocket.close()
            except Exception as e:
                logger.error(f"Error closing websocket: {e}")
            self.websocket = None


class PollingHostBridge:
    """HTTP host client: pulls queued requests and pushes replies and events."""

    def __init__(
        self,
        base_url: str,
        handlers: Dict[str, MethodHandler],
        poll_interval: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.handlers = handlers
        self.poll_interval = poll_interval
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=30.0)
        self.running = True
        self.retry_delay = 1
        self.max_retry_delay = 30

    async def poll_once(self) -> bool:
        """Answer at most one queued request. Returns False when nothing was pending."""
        response = await self.client.get("/pull")
        if response.status_code == 204:
            return False
        response.raise_for_status()
        envelope = response.json()
        logger.info(f"📨 Pulled {envelope.get('method')} (ID: {envelope.get('id')})")
        reply = await answer_request(self.handlers, envelope)
        await self._post(reply)
        return True

    async def emit_event(self, event: str, payload: Any = None, channel: Optional[str] = None) -> None:
        await self._post(build_event(event, payload, channel))

    async def _post(self, message: Dict[str, Any]) -> None:
        response = await self.client.post("/push", json=message)
        response.raise_for_status()

    async def run(self) -> None:
        """Poll until shut down, backing off while the relay is unreachable."""
        while self.running:
            try:
                answered = await self.poll_once()
                self.retry_delay = 1
            except httpx.HTTPError as e:
                logger.warning(f"⚠️ Poll failed: {e}; retrying in {self.retry_delay} seconds")
                await asyncio.sleep(self.retry_delay)
                self.retry_delay = min(self.retry_delay * 2, self.max_retry_delay)
                continue
            if not answered:
                await asyncio.sleep(self.poll_interval)

    async def shutdown(self) -> None:
        logger.info("Shutting down polling host bridge")
        self.running = False
        await self.client.aclose()
