"""Channel registry: labels partitioning the event stream across agent sessions."""

import logging
from typing import Any, Dict, List

from figma_events import EventBuffer
from figma_tools import ToolValidationError

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "default"


def require_label(channel: Any) -> str:
    if not isinstance(channel, str) or not channel.strip():
        raise ToolValidationError("channel must be a non-empty string")
    return channel


class ChannelRegistry:
    """Known channel labels plus the single active one.

    The default label is always known and can never be removed.
    """

    def __init__(self, events: EventBuffer) -> None:
        self._events = events
        self._known: List[str] = [DEFAULT_CHANNEL]
        self.active = DEFAULT_CHANNEL

    @property
    def known(self) -> List[str]:
        return list(self._known)

    def join(self, channel: str) -> str:
        channel = require_label(channel)
        if channel not in self._known:
            self._known.append(channel)
        self.active = channel
        logger.info(f"📡 Joined channel: {channel}")
        return self.active

    def leave(self, channel: str, purge: bool = False) -> Dict[str, Any]:
        channel = require_label(channel)
        if channel != DEFAULT_CHANNEL and channel in self._known:
            self._known.remove(channel)
        if purge:
            cleared = self._events.clear(channel)
            logger.info(f"🧹 Cleared {cleared} event(s) of channel {channel}")
        if self.active == channel:
            self.active = DEFAULT_CHANNEL
        logger.info(f"📴 Left channel: {channel} (active: {self.active})")
        return {"activeChannel": self.active, "left": channel}

    def list(self) -> Dict[str, Any]:
        return {
            "activeChannel": self.active,
            "channels": self.known,
            "counts": self._events.counts_by_channel(),
        }
