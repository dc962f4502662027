"""
Figma Communicator - Relay Delivery Layer

This module provides the communication layer between the relay and the
Figma host plugin. Forwarded tool calls are pushed over the plugin's
WebSocket when one is open, or queued for the plugin to pull over HTTP.
Replies arriving on either path are correlated back to the waiting call.
"""

import asyncio
import json
import uuid
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from figma_events import EventBuffer, RelayEvent

logger = logging.getLogger(__name__)

MESSAGE_TYPE_REQUEST = "request"
MESSAGE_TYPE_RESPONSE = "response"
MESSAGE_TYPE_EVENT = "event"


class ToolExecutionError(Exception):
    """
    Specialized exception for tool execution failures.

    Carries a structured payload allowing the agent to self-correct.
    Expected payload shape: { code: str, message: str, details?: dict }
    """

    default_code = "unknown_plugin_error"

    def __init__(self, payload: Any, command: str | None = None, params: Dict[str, Any] | None = None):
        self.command = command
        self.params = params

        # Normalize payload and capture canonical fields
        if isinstance(payload, dict):
            self.code: str = str(payload.get("code") or self.default_code)
            self.message: str = str(payload.get("message") or "Plugin error")
            self.details: Dict[str, Any] = payload.get("details", {}) or {}
            normalized_payload = payload
        else:
            self.code = self.default_code
            self.message = str(payload)
            self.details = {}
            normalized_payload = {"code": self.code, "message": self.message, "details": self.details}

        self.payload = normalized_payload
        super().__init__(self.message)


class RequestTimeoutError(ToolExecutionError):
    """The host did not answer a forwarded call within the configured timeout."""

    default_code = "timeout"

    def __init__(self, timeout_ms: int, command: str | None = None):
        self.timeout_ms = timeout_ms
        super().__init__(
            {"code": self.default_code, "message": f"Timeout after {timeout_ms}ms", "details": {"timeout_ms": timeout_ms}},
            command=command,
        )


class HostDisconnectedError(ToolExecutionError):
    """The host connection closed while the call was still pending."""

    default_code = "host_disconnected"

    def __init__(self, command: str | None = None):
        super().__init__({"code": self.default_code, "message": "Plugin disconnected"}, command=command)


def generate_id() -> str:
    """Generate a unique correlation id: millisecond timestamp plus random suffix."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


@dataclass
class PendingRequest:
    id: str
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None
    command: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    created_at: float = field(default_factory=time.time)


class PendingRequestTable:
    """
    Correlation table for in-flight forwarded calls.

    Each registered id settles exactly once: resolved, rejected, timed out,
    or failed on disconnect. Settling an id that is no longer present is a no-op.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def register(
        self,
        request_id: str,
        timeout_ms: int,
        command: str | None = None,
        params: Dict[str, Any] | None = None,
    ) -> asyncio.Future:
        if request_id in self._entries:
            raise ValueError(f"Duplicate request id: {request_id}")
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        entry = PendingRequest(id=request_id, future=future, command=command, params=params)
        entry.timer = loop.call_later(timeout_ms / 1000.0, self._expire, request_id, timeout_ms)
        self._entries[request_id] = entry
        # A waiter that gives up (task cancelled) releases its slot right away
        future.add_done_callback(lambda f: self._discard_cancelled(request_id, f))
        logger.debug(f"📝 Added to pending requests: {request_id} (total: {len(self._entries)})")
        return future

    def get(self, request_id: str) -> Optional[PendingRequest]:
        return self._entries.get(request_id)

    def resolve(self, request_id: str, result: Any) -> bool:
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_result(result)
        return True

    def reject(self, request_id: str, error: BaseException) -> bool:
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_exception(error)
        return True

    def fail_all(self, error: Optional[BaseException] = None) -> int:
        """Reject every pending request with ``error`` (default HostDisconnectedError). Returns the count."""
        failed = 0
        for request_id in list(self._entries.keys()):
            entry = self._entries.get(request_id)
            if entry is None:
                continue
            if self.reject(request_id, error if error is not None else HostDisconnectedError(command=entry.command)):
                failed += 1
        return failed

    def _pop(self, request_id: str) -> Optional[PendingRequest]:
        entry = self._entries.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def _expire(self, request_id: str, timeout_ms: int) -> None:
        entry = self._entries.get(request_id)
        if entry is None:
            return
        elapsed = time.time() - entry.created_at
        logger.error(f"⏰ Tool call {entry.command} (ID: {request_id}) timed out after {elapsed:.3f}s (limit: {timeout_ms}ms)")
        self.reject(request_id, RequestTimeoutError(timeout_ms, command=entry.command))

    def _discard_cancelled(self, request_id: str, future: asyncio.Future) -> None:
        entry = self._entries.get(request_id)
        if future.cancelled() and entry is not None and entry.future is future:
            self._pop(request_id)
            logger.debug(f"⚠️ Pending request cancelled by caller: {request_id}")


class PollingQueue:
    """FIFO of request envelopes waiting for the host to pull them."""

    def __init__(self) -> None:
        self._items: Deque[Dict[str, Any]] = deque()

    def __len__(self) -> int:
        return len(self._items)

    async def deliver(self, envelope: Dict[str, Any]) -> None:
        self._items.append(envelope)

    def pull(self) -> Optional[Dict[str, Any]]:
        if not self._items:
            return None
        return self._items.popleft()


class SocketTransport:
    """
    Push-capable duplex connection to a host plugin.

    Wraps any websocket object exposing ``send_text`` plus an ``is_open``
    callable; the relay server adapts Starlette websockets to this shape.
    """

    def __init__(self, websocket: Any, connection_id: int, is_open=None):
        self.websocket = websocket
        self.connection_id = connection_id
        self._is_open = is_open
        self.closed = False

    @property
    def is_open(self) -> bool:
        if self.closed:
            return False
        if self._is_open is None:
            return True
        return bool(self._is_open())

    async def deliver(self, envelope: Dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(envelope))


class FigmaCommunicator:
    """
    Handles RPC communication with the Figma plugin.

    This class manages:
    - Sending request envelopes to the plugin (socket push or polling queue)
    - Tracking pending requests with unique IDs
    - Resolving futures when response messages arrive on either path
    - Buffering plugin events
    - Failing pending requests when the plugin disconnects
    """

    def __init__(self, events: EventBuffer, timeout_ms: int = 15000):
        """
        Initialize the communicator.

        Args:
            events: Buffer receiving plugin-originated events
            timeout_ms: Timeout in milliseconds for forwarded calls (default: 15000)
        """
        self.events = events
        self.timeout_ms = timeout_ms
        self.pending = PendingRequestTable()
        self.queue = PollingQueue()
        self.connection: Optional[SocketTransport] = None

    @property
    def connected(self) -> bool:
        return self.connection is not None and self.connection.is_open

    def attach_connection(self, connection: SocketTransport) -> None:
        """Make ``connection`` the active socket. A previous socket is left as is."""
        if self.connection is not None and self.connection is not connection:
            logger.info(f"🔀 Connection {connection.connection_id} replaces connection {self.connection.connection_id}")
        self.connection = connection
        logger.info(f"🔌 Plugin connected (connection {connection.connection_id})")

    def detach_connection(self, connection: SocketTransport) -> int:
        """Handle a closed socket: clear it if active and fail every pending call."""
        connection.closed = True
        if self.connection is connection:
            self.connection = None
        failed = self.pending.fail_all()
        logger.info(f"🔌 Plugin disconnected (connection {connection.connection_id}), failed {failed} pending request(s)")
        return failed

    async def send_command(self, command: str, params: Dict[str, Any] | None = None, channel: str = "default") -> Any:
        """
        Forward a command to the Figma plugin and wait for the response.

        Args:
            command: The command name (e.g., "create_frame")
            params: Optional parameters for the command
            channel: Channel label stamped on the envelope

        Returns:
            The result from the plugin

        Raises:
            RequestTimeoutError: If no reply arrives in time
            HostDisconnectedError: If the plugin socket closes first
            ToolExecutionError: If the plugin returns an error
        """
        request_id = generate_id()
        envelope = {
            "type": MESSAGE_TYPE_REQUEST,
            "id": request_id,
            "method": command,
            "params": params or {},
            "channel": channel,
        }

        future = self.pending.register(request_id, self.timeout_ms, command=command, params=params or {})
        start_time = time.time()

        if self.connected:
            connection = self.connection
            try:
                logger.info(f"🚀 Sending request: {command} with ID: {request_id} over connection {connection.connection_id}")
                await connection.deliver(envelope)
            except Exception as e:
                logger.warning(f"⚠️ Socket send failed for {request_id} ({e}); queueing for polling instead")
                await self.queue.deliver(envelope)
        else:
            logger.info(f"📥 Queued request: {command} with ID: {request_id} (queue size: {len(self.queue) + 1})")
            await self.queue.deliver(envelope)
        logger.debug(f"🚀 Request payload: {json.dumps(envelope)}")

        try:
            result = await future
        except ToolExecutionError as e:
            logger.error(f"❌ Tool call {command} (ID: {request_id}) failed after {time.time() - start_time:.3f}s: {e}")
            raise
        logger.info(f"✅ Tool call {command} (ID: {request_id}) completed after {time.time() - start_time:.3f}s")
        return result

    def pull(self) -> Optional[Dict[str, Any]]:
        """Dequeue the oldest queued request for a polling plugin, or None."""
        envelope = self.queue.pull()
        if envelope is not None:
            logger.debug(f"📤 Pulled request {envelope.get('id')} ({len(self.queue)} left)")
        return envelope

    def handle_tool_response(self, message: Dict[str, Any]) -> bool:
        """
        Handle a response message from the plugin.

        Returns True if it settled a pending request. Responses without an id
        or for an unknown id (for example after a timeout) are dropped.
        """
        if not isinstance(message, dict):
            return False
        request_id = message.get("id")
        if not isinstance(request_id, str):
            logger.warning("❌ Received response without ID")
            return False

        entry = self.pending.get(request_id)
        if entry is None:
            logger.debug(f"❌ Received response for unknown ID: {request_id}")
            return False

        error_val = message.get("error")
        # An empty error object still counts as a failure
        if error_val is not None and error_val is not False and error_val != "":
            if isinstance(error_val, str):
                # Some plugins send the structured error as a JSON string
                try:
                    parsed = json.loads(error_val)
                    if isinstance(parsed, dict):
                        error_val = parsed
                except ValueError:
                    pass
            tool_error = ToolExecutionError(error_val, command=entry.command, params=entry.params)
            logger.debug(f"🔥 Rejecting {request_id}: {tool_error.message}")
            return self.pending.reject(request_id, tool_error)

        logger.debug(f"🎯 Result payload for {request_id}: {message.get('result')}")
        return self.pending.resolve(request_id, message.get("result"))

    def handle_event(self, message: Dict[str, Any], fallback_channel: str) -> Optional[RelayEvent]:
        """Buffer a plugin event, tagged with its own channel or ``fallback_channel``."""
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            logger.debug("Ignoring event message without an event name")
            return None
        channel = message.get("channel")
        if not isinstance(channel, str) or not channel.strip():
            channel = fallback_channel
        timestamp = message.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            timestamp = None
        event = RelayEvent.create(
            event=message["event"],
            payload=message.get("payload"),
            channel=channel,
            timestamp=int(timestamp) if timestamp is not None else None,
        )
        self.events.append(event)
        logger.debug(f"📣 Event {event.event} buffered on channel {channel}")
        return event

    def push(self, message: Dict[str, Any], fallback_channel: str) -> Optional[str]:
        """Route a body posted by a polling plugin; returns "event", "response" or None."""
        if not isinstance(message, dict):
            return None
        if message.get("type") == MESSAGE_TYPE_EVENT or (
            isinstance(message.get("event"), str) and message.get("type") != MESSAGE_TYPE_RESPONSE
        ):
            return MESSAGE_TYPE_EVENT if self.handle_event(message, fallback_channel) else None
        if "id" in message:
            self.handle_tool_response(message)
            return MESSAGE_TYPE_RESPONSE
        return None

    def handle_socket_message(self, message: Any, fallback_channel: str) -> Optional[str]:
        """Route a message received over the duplex socket."""
        if not isinstance(message, dict):
            return None
        msg_type = message.get("type")
        if msg_type == MESSAGE_TYPE_RESPONSE or (msg_type is None and "id" in message):
            self.handle_tool_response(message)
            return MESSAGE_TYPE_RESPONSE
        if msg_type == MESSAGE_TYPE_EVENT:
            return MESSAGE_TYPE_EVENT if self.handle_event(message, fallback_channel) else None
        logger.debug(f"Ignoring unknown message type: {msg_type}")
        return None
