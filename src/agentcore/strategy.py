"""REACT (Reason -> Act) control loop.

The strategy never performs I/O. Each call inspects and mutates one envelope and
returns exactly one `NextStep` describing what the router should dispatch next.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from agentcore.envelope import Envelope, EnvelopeManager
from agentcore.errors import AgentCoreError, ExecutionError, ValidationError
from agentcore.stop_conditions import StopConditionSet
from agentcore.types import Clock, CompletionStatus, Message
from agentcore.validator import Action, FinalAnswer, ToolCall

DEFAULT_MAX_ITERATIONS = 5

DEFAULT_PROMPT = """You are an execution agent.

You must decide ONE action per iteration.

Available tools:
{{tools}}

Current state:
- Iteration: {{iteration}} of {{max_iterations}}
- Last action: {{last_action}}
- Tool history: {{history_count}} executions
{{feedback}}
Rules:
- Use only the provided tools
- If you have enough information, return a final-answer action
- Always respond with one JSON object and nothing else
- Do NOT explain your reasoning

Output format:
{
  "kind": "tool-call" | "final-answer",
  "tool": "tool_name_if_any",
  "input": {},
  "confidence": number between 0 and 1,
  "message": "answer for the user when kind is final-answer"
}

User input:
{{input}}

Tool history:
{{history}}"""


@dataclass(frozen=True)
class SendToModel:
    message: Message


@dataclass(frozen=True)
class SendToTool:
    message: Message


@dataclass(frozen=True)
class SendToMemory:
    message: Message


@dataclass(frozen=True)
class Complete:
    envelope: Envelope
    status: CompletionStatus
    reason: str | None = None


@dataclass(frozen=True)
class Fail:
    error: Exception
    status: CompletionStatus = CompletionStatus.EXECUTION_ERROR


NextStep = SendToModel | SendToTool | SendToMemory | Complete | Fail


class ReactStrategy:
    """Bounded Reason -> Act loop over one envelope."""

    name = "react"

    def __init__(
        self,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        stop_conditions: StopConditionSet | None = None,
        memory_tools: Iterable[str] = (),
        prompt_template: str = "",
        envelopes: EnvelopeManager | None = None,
        clock: Clock = time.time,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self.max_iterations = max_iterations
        self.stop_conditions = stop_conditions or StopConditionSet()
        self._memory_tools = frozenset(memory_tools)
        self._prompt_template = prompt_template.strip()
        self._envelopes = envelopes or EnvelopeManager(clock)

    def execute(self, envelope: Envelope) -> NextStep:
        """Start or re-enter the loop: request the next reasoning step."""

        try:
            if envelope.state.iteration >= self.max_iterations:
                return self._exhausted(envelope)
            return SendToModel(self._model_request(envelope))
        except Exception as exc:
            return self._fail(envelope, exc)

    def continue_loop(self, envelope: Envelope, action: Action) -> NextStep:
        """Consume one validated model turn and decide what happens next."""

        try:
            envelope.state.iteration += 1
            envelope.model.last_response = action
            envelope.state.last_action = action.kind
            envelope.state.last_error = None
            self._envelopes.record_event(envelope, "model_response", confidence=action.confidence, tool=action.tool)

            if isinstance(action, FinalAnswer):
                self._envelopes.record_event(envelope, "final_answer", confidence=action.confidence)
                envelope.finish(CompletionStatus.FINAL_ANSWER, completed=True)
                return Complete(envelope, CompletionStatus.FINAL_ANSWER)
            if envelope.state.iteration >= self.max_iterations:
                return self._exhausted(envelope)
            condition = self.stop_conditions.first_match(envelope, action)
            if condition is not None:
                self._envelopes.record_event(envelope, "stop_condition", tool=action.tool)
                envelope.finish(CompletionStatus.STOP_CONDITION, completed=True)
                return Complete(envelope, CompletionStatus.STOP_CONDITION, reason=condition.name)
            return self._tool_step(envelope, action)
        except Exception as exc:
            return self._fail(envelope, exc)

    def reject(self, envelope: Envelope, error: ValidationError) -> NextStep:
        """Account for a model turn that failed validation."""

        try:
            envelope.state.iteration += 1
            envelope.state.last_error = error.message
            self._envelopes.record_event(envelope, "validation_error", error=f"{error.kind}: {error.message}")
            if envelope.state.iteration >= self.max_iterations:
                return self._exhausted(envelope)
            if self.stop_conditions.stop_on_error:
                envelope.finish(CompletionStatus.VALIDATION_ERROR, completed=False)
                return Fail(error, CompletionStatus.VALIDATION_ERROR)
            return SendToModel(self._model_request(envelope))
        except Exception as exc:
            return self._fail(envelope, exc)

    def handle_tool_result(self, envelope: Envelope, output: Any, *, duration_ms: int | None = None) -> NextStep:
        """Record a tool result wired straight back into the node, then reason again."""

        try:
            last = envelope.model.last_response
            tool_input = last.input if isinstance(last, ToolCall) else None
            self._envelopes.record_tool_result(envelope, tool_input=tool_input, output=output, duration_ms=duration_ms)
            self._envelopes.record_event(
                envelope,
                "tool_response",
                tool=envelope.state.last_tool,
                duration_ms=duration_ms,
            )
        except Exception as exc:
            return self._fail(envelope, exc)
        return self.execute(envelope)

    def generate_prompt(self, envelope: Envelope) -> str:
        template = self._prompt_template or DEFAULT_PROMPT
        feedback = ""
        if envelope.state.last_error:
            feedback = f"\nYour previous response was rejected: {envelope.state.last_error}\n"
        values = {
            "tools": "\n".join(f"- {tool}" for tool in envelope.allowed_tools) or "- (none)",
            "iteration": str(envelope.state.iteration),
            "max_iterations": str(self.max_iterations),
            "last_action": envelope.state.last_action or "none",
            "history_count": str(len(envelope.tools.history)),
            "feedback": feedback,
            "input": _dumps(envelope.input),
            "history": _dumps([item.to_dict() for item in envelope.tools.history]),
        }
        prompt = template
        for key, value in values.items():
            prompt = prompt.replace("{{" + key + "}}", value)
        return prompt

    def _model_request(self, envelope: Envelope) -> Message:
        prompt = self.generate_prompt(envelope)
        envelope.model.last_prompt = prompt
        trace_id = envelope.trace_id
        iteration = envelope.state.iteration
        self._envelopes.record_event(envelope, "model_request")
        return {
            "payload": {
                "prompt": prompt,
                "context": {
                    "traceId": trace_id,
                    "iteration": iteration,
                    "maxIterations": self.max_iterations,
                    "input": envelope.input,
                    "allowedTools": list(envelope.allowed_tools),
                    "lastAction": envelope.state.last_action,
                    "lastError": envelope.state.last_error,
                    "toolHistory": [item.to_dict() for item in envelope.tools.history],
                },
            },
            "traceId": trace_id,
            "_agentCore": {"type": "model_request", "traceId": trace_id, "iteration": iteration},
            "_correlation": {"type": "model_response", "traceId": trace_id, "iteration": iteration},
        }

    def _tool_step(self, envelope: Envelope, action: ToolCall) -> NextStep:
        memory = action.tool in self._memory_tools
        request_type = "memory_request" if memory else "tool_request"
        envelope.state.last_tool = action.tool
        self._envelopes.record_event(envelope, request_type, tool=action.tool)
        message = {
            "tool": action.tool,
            "input": action.input,
            "traceId": envelope.trace_id,
            "iteration": envelope.state.iteration,
            "payload": action.input,
            "_agentCore": {
                "type": request_type,
                "traceId": envelope.trace_id,
                "iteration": envelope.state.iteration,
                "tool": action.tool,
            },
            "_correlation": {
                "type": "tool_response",
                "traceId": envelope.trace_id,
                "iteration": envelope.state.iteration,
            },
        }
        return SendToMemory(message) if memory else SendToTool(message)

    def _exhausted(self, envelope: Envelope) -> Complete:
        self._envelopes.record_event(envelope, "max_iterations_reached")
        envelope.finish(CompletionStatus.MAX_ITERATIONS, completed=False)
        return Complete(envelope, CompletionStatus.MAX_ITERATIONS, reason=f"max iterations ({self.max_iterations}) reached")

    def _fail(self, envelope: Envelope, exc: Exception) -> Fail:
        error = exc if isinstance(exc, AgentCoreError) else ExecutionError(f"{type(exc).__name__}: {exc}")
        if error is not exc:
            error.__cause__ = exc
        logger.opt(exception=exc).error("react.step_failed trace={}", envelope.trace_id)
        envelope.finish(CompletionStatus.EXECUTION_ERROR, completed=False)
        try:
            self._envelopes.record_event(envelope, "error", error=str(error))
        except Exception:
            logger.opt(exception=True).warning("react.error_event_failed trace={}", envelope.trace_id)
        return Fail(error, CompletionStatus.EXECUTION_ERROR)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2, default=str)
