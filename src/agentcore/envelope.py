"""Agent envelope: the per-session state record threaded through the REACT loop."""

from __future__ import annotations

import copy
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentcore.types import Clock, CompletionStatus

if TYPE_CHECKING:
    from agentcore.validator import Action


def field_of(message: Any, key: str, default: Any = None) -> Any:
    """Read a field from mapping-like or attribute-based messages."""

    if isinstance(message, Mapping):
        return message.get(key, default)
    return getattr(message, key, default)


@dataclass(frozen=True)
class ObservabilityEvent:
    iteration: int
    action: str
    timestamp: float
    confidence: float | None = None
    tool: str | None = None
    error: str | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"iteration": self.iteration, "action": self.action, "timestamp": self.timestamp}
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.tool is not None:
            data["tool"] = self.tool
        if self.error is not None:
            data["error"] = self.error
        if self.duration_ms is not None:
            data["durationMs"] = self.duration_ms
        return data


@dataclass(frozen=True)
class ToolExecution:
    iteration: int
    tool: str | None
    input: Any
    output: Any
    duration_ms: int | None
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "tool": self.tool,
            "input": self.input,
            "output": self.output,
            "durationMs": self.duration_ms,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class AgentState:
    iteration: int = 0
    completed: bool = False
    last_action: str | None = None
    last_tool: str | None = None
    completion_reason: CompletionStatus | None = None
    last_error: str | None = None


@dataclass
class ModelInfo:
    last_prompt: str | None = None
    last_response: Action | None = None


@dataclass
class ToolsInfo:
    available: tuple[str, ...] = ()
    history: list[ToolExecution] = field(default_factory=list)


@dataclass
class Observability:
    trace_id: str
    started_at: float
    events: list[ObservabilityEvent] = field(default_factory=list)


@dataclass
class Envelope:
    """State for one agent session; owned by exactly one active execution."""

    input: Any
    observability: Observability
    state: AgentState = field(default_factory=AgentState)
    model: ModelInfo = field(default_factory=ModelInfo)
    tools: ToolsInfo = field(default_factory=ToolsInfo)
    memory: dict[str, Any] = field(default_factory=dict)

    @property
    def trace_id(self) -> str:
        return self.observability.trace_id

    @property
    def allowed_tools(self) -> tuple[str, ...]:
        return self.tools.available

    @property
    def terminal(self) -> bool:
        return self.state.completion_reason is not None

    def finish(self, status: CompletionStatus, *, completed: bool) -> None:
        """Mark the envelope terminal; the first recorded reason wins."""

        if self.state.completion_reason is None:
            self.state.completion_reason = status
            self.state.completed = completed

    def to_dict(self) -> dict[str, Any]:
        last_response = self.model.last_response
        return {
            "input": self.input,
            "state": {
                "iteration": self.state.iteration,
                "completed": self.state.completed,
                "lastAction": self.state.last_action,
                "lastTool": self.state.last_tool,
                "completionReason": None
                if self.state.completion_reason is None
                else str(self.state.completion_reason),
                "lastError": self.state.last_error,
            },
            "model": {
                "lastPrompt": self.model.last_prompt,
                "lastResponse": None if last_response is None else last_response.to_payload(),
            },
            "tools": {
                "available": list(self.tools.available),
                "history": [item.to_dict() for item in self.tools.history],
            },
            "memory": dict(self.memory),
            "observability": {
                "traceId": self.observability.trace_id,
                "startedAt": self.observability.started_at,
                "events": [event.to_dict() for event in self.observability.events],
            },
        }


class EnvelopeManager:
    """Creates envelopes and appends to their audit trail."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock

    def create_envelope(self, initial_payload: Any, allowed_tools: Iterable[str] = ()) -> Envelope:
        started_at = self._clock()
        return Envelope(
            input=copy.deepcopy(initial_payload) if initial_payload is not None else {},
            observability=Observability(trace_id=self.new_trace_id(started_at), started_at=started_at),
            tools=ToolsInfo(available=normalize_tool_names(allowed_tools)),
        )

    def record_event(
        self,
        envelope: Envelope,
        action: str,
        *,
        confidence: float | None = None,
        tool: str | None = None,
        error: str | None = None,
        duration_ms: int | None = None,
    ) -> ObservabilityEvent:
        event = ObservabilityEvent(
            iteration=envelope.state.iteration,
            action=action,
            timestamp=self._clock(),
            confidence=confidence,
            tool=tool,
            error=error,
            duration_ms=duration_ms,
        )
        envelope.observability.events.append(event)
        return event

    def record_tool_result(
        self,
        envelope: Envelope,
        *,
        tool_input: Any,
        output: Any,
        duration_ms: int | None,
        error: str | None = None,
    ) -> ToolExecution:
        execution = ToolExecution(
            iteration=envelope.state.iteration,
            tool=envelope.state.last_tool,
            input=tool_input,
            output=output,
            duration_ms=duration_ms,
            success=error is None,
            error=error,
        )
        envelope.tools.history.append(execution)
        return execution

    @staticmethod
    def new_trace_id(now: float) -> str:
        return f"trace-{int(now * 1000)}-{uuid.uuid4().hex[:12]}"


def normalize_tool_names(names: Iterable[str]) -> tuple[str, ...]:
    """Deduplicate tool names in first-seen order; matching stays case sensitive."""

    if isinstance(names, str):
        names = [names]
    return tuple(dict.fromkeys(name for name in names if isinstance(name, str) and name))
