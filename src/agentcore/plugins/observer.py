"""Builtin observer hooks: structured log lines for dispatch and session lifecycle."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from agentcore.hookspecs import hookimpl
from agentcore.types import Channel, CompletionStatus, Message

if TYPE_CHECKING:
    from agentcore.envelope import Envelope


class LogObserver:
    @hookimpl
    def dispatch_output(self, channel: Channel, message: Message, trace_id: str | None) -> None:
        logger.debug("observer.output channel={} trace={} keys={}", channel.label, trace_id, sorted(message))

    @hookimpl
    def on_session_end(self, envelope: Envelope, status: CompletionStatus) -> None:
        logger.info(
            "observer.session_end trace={} status={} iterations={} events={}",
            envelope.trace_id,
            status,
            envelope.state.iteration,
            len(envelope.observability.events),
        )

    @hookimpl
    def on_error(self, stage: str, error: Exception, message: Message | None) -> None:
        _ = message
        logger.warning("observer.error stage={} error_type={} error={}", stage, type(error).__name__, error)


plugin = LogObserver()
