"""
Tool Dispatcher - routes MCP tool calls.

Relay-local tools (events, channels, snapshot diffing, batches, file export)
run in-process; every other name is forwarded verbatim to the Figma plugin.
All failures come back as a ToolOutcome, never as an exception.
"""

import base64
import binascii
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiofiles
import aiofiles.os

from figma_channels import ChannelRegistry
from figma_communicator import FigmaCommunicator, ToolExecutionError
from figma_config import RelayConfig
from figma_events import EventBuffer
from figma_snapshots import diff_snapshots
from figma_tools import (
    ToolArgs,
    ToolValidationError,
    UnsupportedOperationError,
    to_json_text,
    validate_arguments,
)

logger = logging.getLogger(__name__)

BATCH_TOOL = "batch_calls"
RENDER_METHOD = "export_node_as_image"
EXPORT_PATH_FIELDS = ("outputPath", "dir", "filename")

_DATA_URL = re.compile(r"^data:(?P<meta>[^,]*),(?P<payload>.*)$", re.DOTALL)


class ExportError(Exception):
    code = "export_failed"


@dataclass
class ToolOutcome:
    ok: bool
    result: Any = None
    error: Optional[str] = None
    code: Optional[str] = None

    def to_text(self) -> str:
        return to_json_text(self.result) if self.ok else (self.error or "Unknown error")


class RelayContext:
    """All mutable relay state: one instance per running relay."""

    def __init__(self, config: RelayConfig) -> None:
        self.config = config
        self.events = EventBuffer(max_events=config.max_events)
        self.channels = ChannelRegistry(self.events)
        self.communicator = FigmaCommunicator(self.events, timeout_ms=config.request_timeout_ms)

    async def forward(self, method: str, params: Dict[str, Any]) -> Any:
        return await self.communicator.send_command(method, params, channel=self.channels.active)

    def handle_event(self, message: Dict[str, Any]):
        return self.communicator.handle_event(message, self.channels.active)

    def push(self, message: Dict[str, Any]) -> Optional[str]:
        return self.communicator.push(message, self.channels.active)

    def handle_socket_message(self, message: Any) -> Optional[str]:
        return self.communicator.handle_socket_message(message, self.channels.active)

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "connected": self.communicator.connected,
            "pending": len(self.communicator.pending),
            "queued": len(self.communicator.queue),
            "events": len(self.events),
            "activeChannel": self.channels.active,
        }


LocalHandler = Callable[[Any, Dict[str, Any]], Awaitable[Any]]


class ToolDispatcher:
    def __init__(self, context: RelayContext) -> None:
        self.context = context
        self._local_handlers: Dict[str, LocalHandler] = {
            "get_events": self._get_events,
            "clear_events": self._clear_events,
            "join_channel": self._join_channel,
            "leave_channel": self._leave_channel,
            "list_channels": self._list_channels,
            "diff_snapshots": self._diff_snapshots,
            "export_image_to_file": self._export_image_to_file,
            BATCH_TOOL: self._batch_calls,
        }

    async def dispatch(self, name: str, arguments: Optional[Dict[str, Any]]) -> ToolOutcome:
        """Execute a tool call and wrap its result or failure."""
        logger.info(f"🛠️ Tool called: {name}")
        try:
            result = await self.execute(name, arguments or {})
        except ToolExecutionError as e:
            logger.error(f"❌ Tool {name} failed: {e.message}")
            return ToolOutcome(ok=False, error=e.message, code=e.code)
        except (ToolValidationError, UnsupportedOperationError, ExportError) as e:
            logger.warning(f"⚠️ Tool {name} rejected: {e}")
            return ToolOutcome(ok=False, error=str(e), code=e.code)
        except Exception as e:
            logger.error(f"❌ Unexpected error in {name}: {e}", exc_info=True)
            return ToolOutcome(ok=False, error=str(e) or e.__class__.__name__, code="internal_error")
        return ToolOutcome(ok=True, result=result)

    async def execute(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Validate then run one call; raises on failure."""
        if not isinstance(name, str) or not name:
            raise ToolValidationError("Tool name must be a non-empty string")
        args = validate_arguments(name, arguments)
        handler = self._local_handlers.get(name)
        if handler is not None:
            return await handler(args, arguments)
        return await self.context.forward(name, arguments)

    # Events & channels
    async def _get_events(self, args: ToolArgs, _raw: Dict[str, Any]) -> Dict[str, Any]:
        events = self.context.events
        total = len(events)
        matched = events.query(limit=args.limit, since=args.since, channel=args.channel, clear=bool(args.clear))
        return {
            "channel": args.channel or self.context.channels.active,
            "total": total,
            "returned": len(matched),
            "events": [event.to_dict() for event in matched],
        }

    async def _clear_events(self, args: ToolArgs, _raw: Dict[str, Any]) -> Dict[str, Any]:
        cleared = self.context.events.clear(args.channel)
        if args.channel:
            return {"cleared": cleared, "channel": args.channel}
        return {"cleared": cleared}

    async def _join_channel(self, args: ToolArgs, _raw: Dict[str, Any]) -> Dict[str, Any]:
        return {"channel": self.context.channels.join(args.channel)}

    async def _leave_channel(self, args: ToolArgs, _raw: Dict[str, Any]) -> Dict[str, Any]:
        return self.context.channels.leave(args.channel, purge=bool(args.clear))

    async def _list_channels(self, _args: ToolArgs, _raw: Dict[str, Any]) -> Dict[str, Any]:
        return self.context.channels.list()

    async def _diff_snapshots(self, args: ToolArgs, _raw: Dict[str, Any]) -> Dict[str, Any]:
        return diff_snapshots(args.before, args.after, args.ignore_fields)

    # Batches
    async def _batch_calls(self, args: ToolArgs, raw: Dict[str, Any]) -> Dict[str, Any]:
        return await self.run_batch(raw.get("calls") or [], stop_on_error=bool(args.stop_on_error))

    async def run_batch(self, calls: List[Any], stop_on_error: bool = False) -> Dict[str, Any]:
        """Run calls one after another, recording a result or error per entry."""
        if not isinstance(calls, list):
            raise ToolValidationError("calls must be an array")

        results: List[Dict[str, Any]] = []
        for index, call in enumerate(calls):
            name = call.get("name") if isinstance(call, dict) else None
            try:
                if not isinstance(name, str) or not name:
                    raise ToolValidationError("Invalid call.name")
                if name == BATCH_TOOL:
                    raise UnsupportedOperationError("Nested batch_calls is not supported")
                arguments = call.get("arguments")
                if not isinstance(arguments, dict):
                    arguments = {}
                result = await self.execute(name, arguments)
                results.append({"index": index, "ok": True, "name": name, "result": result})
            except Exception as e:
                message = e.message if isinstance(e, ToolExecutionError) else str(e)
                logger.warning(f"⚠️ Batch entry {index} ({name}) failed: {message}")
                failure: Dict[str, Any] = {"index": index, "ok": False}
                if isinstance(name, str) and name:
                    failure["name"] = name
                failure["error"] = message
                results.append(failure)
                if stop_on_error:
                    break

        return {"total": len(calls), "returned": len(results), "results": results}

    # Export
    async def _export_image_to_file(self, args: ToolArgs, raw: Dict[str, Any]) -> Dict[str, Any]:
        if args.output_path:
            output_path = args.output_path
        elif args.dir and args.filename:
            output_path = os.path.join(args.dir, args.filename)
        else:
            raise ToolValidationError("outputPath or dir+filename is required")
        output_path = os.path.expanduser(output_path)

        render_params = {k: v for k, v in raw.items() if k not in EXPORT_PATH_FIELDS}
        rendered = await self.context.forward(RENDER_METHOD, render_params)
        data = decode_data_url(rendered.get("dataUrl") if isinstance(rendered, dict) else None)

        parent = os.path.dirname(output_path)
        if parent:
            await aiofiles.os.makedirs(parent, exist_ok=True)
        async with aiofiles.open(output_path, "wb") as f:
            await f.write(data)
        logger.info(f"💾 Wrote {len(data)} bytes to {output_path}")

        return {
            "outputPath": output_path,
            "bytes": len(data),
            "format": rendered.get("format"),
            "mime": rendered.get("mime"),
        }


def decode_data_url(data_url: Any) -> bytes:
    """Decode the base64 payload of a ``data:<mime>;base64,<payload>`` string."""
    if not isinstance(data_url, str):
        raise ExportError(f"{RENDER_METHOD} did not return dataUrl")
    match = _DATA_URL.match(data_url.strip())
    if match is None:
        raise ExportError("Invalid dataUrl")
    payload = "".join(match.group("payload").split())
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ExportError(f"Invalid dataUrl: {e}") from e
