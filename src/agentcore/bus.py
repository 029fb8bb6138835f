"""Minimal async message bus for hosting an agent core node in-process."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

from agentcore.types import Channel, Message


@dataclass(frozen=True)
class ChannelMessage:
    """One message that left the node on one output channel."""

    channel: Channel
    message: Message


class BusProtocol(Protocol):
    """Minimal async contract for bus providers."""

    async def publish_inbound(self, message: Any) -> None: ...

    async def publish_outbound(self, message: ChannelMessage) -> None: ...

    async def next_inbound(self, timeout_seconds: float | None = None) -> Any | None: ...

    async def next_outbound(self, timeout_seconds: float | None = None) -> ChannelMessage | None: ...


class MessageBus:
    """In-memory async bus: raw inbound messages in, channel-tagged messages out."""

    def __init__(self) -> None:
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()
        self._outbound: asyncio.Queue[ChannelMessage] = asyncio.Queue()

    async def publish_inbound(self, message: Any) -> None:
        await self._inbound.put(message)

    async def publish_outbound(self, message: ChannelMessage) -> None:
        await self._outbound.put(message)

    async def next_inbound(self, timeout_seconds: float | None = None) -> Any | None:
        if timeout_seconds is None:
            return await self._inbound.get()
        try:
            return await asyncio.wait_for(self._inbound.get(), timeout=timeout_seconds)
        except TimeoutError:
            return None

    async def next_outbound(self, timeout_seconds: float | None = None) -> ChannelMessage | None:
        if timeout_seconds is None:
            return await self._outbound.get()
        try:
            return await asyncio.wait_for(self._outbound.get(), timeout=timeout_seconds)
        except TimeoutError:
            return None

    def outbound_pending(self) -> int:
        return self._outbound.qsize()
