"""Pluggy hook namespace and agent core hook specifications."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pluggy

from agentcore.types import Channel, Clock, CompletionStatus, Message

if TYPE_CHECKING:
    from agentcore.envelope import Envelope
    from agentcore.stop_conditions import StopCondition

AGENT_CORE_HOOK_NAMESPACE = "agentcore"
hookspec = pluggy.HookspecMarker(AGENT_CORE_HOOK_NAMESPACE)
hookimpl = pluggy.HookimplMarker(AGENT_CORE_HOOK_NAMESPACE)


class AgentCoreHookSpecs:
    """Hook contract for agent core extensions."""

    @hookspec(firstresult=True)
    def provide_stop_condition(self, descriptor: dict[str, Any], clock: Clock) -> StopCondition | None:
        """Build a stop condition for one `{type, value}` descriptor, or None if unknown."""

    @hookspec
    def on_session_start(self, envelope: Envelope) -> None:
        """Observe a new session right after its record is inserted."""

    @hookspec
    def dispatch_output(self, channel: Channel, message: Message, trace_id: str | None) -> None:
        """Observe one message leaving the node on a channel."""

    @hookspec
    def on_session_end(self, envelope: Envelope, status: CompletionStatus) -> None:
        """Observe the single terminal event of a session."""

    @hookspec
    def on_error(self, stage: str, error: Exception, message: Message | None) -> None:
        """Observe errors from any stage."""
