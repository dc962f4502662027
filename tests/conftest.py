import pytest

from figma_config import RelayConfig
from figma_dispatcher import RelayContext, ToolDispatcher


@pytest.fixture
def config():
    return RelayConfig(request_timeout_ms=500, max_events=50)


@pytest.fixture
def context(config):
    return RelayContext(config)


@pytest.fixture
def dispatcher(context):
    return ToolDispatcher(context)


@pytest.fixture
def forwarded(context, monkeypatch):
    """Replace plugin forwarding with a recorder answering from ``forwarded.replies``."""

    class Recorder:
        def __init__(self):
            self.calls = []
            self.replies = {}

        async def __call__(self, method, params):
            self.calls.append((method, params))
            reply = self.replies.get(method, {"ok": True})
            if isinstance(reply, Exception):
                raise reply
            return reply

    recorder = Recorder()
    monkeypatch.setattr(context, "forward", recorder)
    return recorder
