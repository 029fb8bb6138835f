from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from agentcore.config import Settings
from agentcore.node import AgentCoreNode
from agentcore.types import Channel, Outputs


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Recorder:
    """Collects every `send` call exactly as the node emitted it."""

    calls: list[Outputs] = field(default_factory=list)

    def __call__(self, outputs: Outputs) -> None:
        self.calls.append(list(outputs))

    def on(self, channel: Channel) -> list[dict[str, Any]]:
        return [outputs[channel] for outputs in self.calls if outputs[channel] is not None]

    def last(self, channel: Channel) -> dict[str, Any]:
        messages = self.on(channel)
        assert messages, f"nothing sent on {channel.label}"
        return messages[-1]

    def channels(self) -> list[Channel]:
        result = []
        for outputs in self.calls:
            populated = [Channel(index) for index, message in enumerate(outputs) if message is not None]
            assert len(populated) == 1, outputs
            result.append(populated[0])
        return result


@dataclass
class DoneSpy:
    calls: list[Exception | None] = field(default_factory=list)

    def __call__(self, error: Exception | None = None) -> None:
        self.calls.append(error)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def done() -> DoneSpy:
    return DoneSpy()


@pytest.fixture
def settings() -> Settings:
    return Settings(load_entrypoint_plugins=False, session_timeout_seconds=None)


@pytest.fixture
def make_node(settings: Settings, clock: FakeClock, recorder: Recorder):
    nodes: list[AgentCoreNode] = []

    def factory(config: dict[str, Any] | None = None, **kwargs: Any) -> AgentCoreNode:
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("send", recorder)
        node = AgentCoreNode(config or {}, **kwargs)
        nodes.append(node)
        return node

    yield factory
    for node in nodes:
        node.close()
