import time
import uuid
import logging
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional


logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 200


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RelayEvent:
    """A plugin-originated notification (selectionchange, documentchange, ...).

    Immutable once buffered.
    """

    id: str
    event: str
    payload: Any
    timestamp: int
    channel: str

    @classmethod
    def create(cls, event: str, payload: Any, channel: str, timestamp: Optional[int] = None) -> "RelayEvent":
        received_ms = _now_ms()
        return cls(
            id=f"{received_ms}-{uuid.uuid4().hex[:12]}",
            event=event,
            payload=payload,
            timestamp=received_ms if timestamp is None else timestamp,
            channel=channel,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventBuffer:
    """Bounded in-memory ring buffer of plugin events.

    Oldest events are evicted first once ``max_events`` is exceeded.
    """

    def __init__(self, max_events: int = DEFAULT_MAX_EVENTS) -> None:
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        self._events: List[RelayEvent] = []
        self._max_events = max_events

    def __len__(self) -> int:
        return len(self._events)

    @property
    def max_events(self) -> int:
        return self._max_events

    # Public API
    def append(self, event: RelayEvent) -> None:
        self._events.append(event)
        # Keep memory bounded
        if len(self._events) > self._max_events:
            evicted = len(self._events) - self._max_events
            self._events = self._events[-self._max_events :]
            logger.debug(f"🧹 Evicted {evicted} oldest event(s)")

    def snapshot(self) -> List[RelayEvent]:
        return list(self._events)

    def query(
        self,
        limit: Optional[int] = None,
        since: Optional[float] = None,
        channel: Optional[str] = None,
        clear: bool = False,
    ) -> List[RelayEvent]:
        """Return matching events in arrival order, at most the last ``limit`` of them.

        ``clear`` empties the whole buffer after reading, not just the matches.
        """
        events = self._events
        if channel:
            events = [e for e in events if e.channel == channel]
        if since is not None:
            events = [e for e in events if e.timestamp >= since]
        if limit is not None and 0 < limit < len(events):
            events = events[len(events) - limit :]
        result = list(events)
        if clear:
            self._events = []
        return result

    def clear(self, channel: Optional[str] = None) -> int:
        """Remove every event, or only those of ``channel``. Returns the count removed."""
        before = len(self._events)
        if not channel:
            self._events = []
        else:
            self._events = [e for e in self._events if e.channel != channel]
        return before - len(self._events)

    def counts_by_channel(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for event in self._events:
            counts[event.channel] = counts.get(event.channel, 0) + 1
        return counts
