from __future__ import annotations

import pytest

from agentcore.envelope import EnvelopeManager
from agentcore.errors import ExecutionError, ValidationError, ValidationErrorKind
from agentcore.stop_conditions import PredicateStopCondition, StopConditionSet
from agentcore.strategy import (
    Complete,
    Fail,
    ReactStrategy,
    SendToMemory,
    SendToModel,
    SendToTool,
)
from agentcore.types import CompletionStatus
from agentcore.validator import FinalAnswer, ToolCall


@pytest.fixture
def envelopes() -> EnvelopeManager:
    return EnvelopeManager(lambda: 50.0)


def _actions(envelope) -> list[str]:
    return [event.action for event in envelope.observability.events]


def test_execute_requests_model_turn(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(max_iterations=3, envelopes=envelopes)
    envelope = envelopes.create_envelope({"question": "hi"}, ["search"])

    step = strategy.execute(envelope)

    assert isinstance(step, SendToModel)
    message = step.message
    assert message["_correlation"] == {"type": "model_response", "traceId": envelope.trace_id, "iteration": 0}
    assert message["traceId"] == envelope.trace_id
    context = message["payload"]["context"]
    assert context["iteration"] == 0
    assert context["maxIterations"] == 3
    assert context["allowedTools"] == ["search"]
    assert "- search" in message["payload"]["prompt"]
    assert envelope.model.last_prompt == message["payload"]["prompt"]
    assert _actions(envelope) == ["model_request"]


def test_final_answer_completes(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(envelopes=envelopes)
    envelope = envelopes.create_envelope({})

    step = strategy.continue_loop(envelope, FinalAnswer(message="Done", confidence=0.9))

    assert isinstance(step, Complete)
    assert step.status is CompletionStatus.FINAL_ANSWER
    assert envelope.state.iteration == 1
    assert envelope.state.completed is True
    assert envelope.state.last_action == "final-answer"
    assert _actions(envelope) == ["model_response", "final_answer"]


def test_tool_call_dispatches_tool_request(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(envelopes=envelopes)
    envelope = envelopes.create_envelope({}, ["search"])

    step = strategy.continue_loop(envelope, ToolCall(tool="search", input={"q": "x"}))

    assert isinstance(step, SendToTool)
    assert step.message["tool"] == "search"
    assert step.message["input"] == {"q": "x"}
    assert step.message["_correlation"] == {"type": "tool_response", "traceId": envelope.trace_id, "iteration": 1}
    assert envelope.state.last_tool == "search"
    assert _actions(envelope) == ["model_response", "tool_request"]


def test_memory_tools_dispatch_memory_request(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(envelopes=envelopes, memory_tools=["remember"])
    envelope = envelopes.create_envelope({}, ["remember"])

    step = strategy.continue_loop(envelope, ToolCall(tool="remember", input={"fact": "x"}))

    assert isinstance(step, SendToMemory)
    assert step.message["_agentCore"]["type"] == "memory_request"


def test_final_answer_wins_over_iteration_bound(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(max_iterations=1, envelopes=envelopes)
    envelope = envelopes.create_envelope({})

    step = strategy.continue_loop(envelope, FinalAnswer(message="Done"))

    assert step.status is CompletionStatus.FINAL_ANSWER


def test_iteration_bound_completes_without_tool_dispatch(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(max_iterations=2, envelopes=envelopes)
    envelope = envelopes.create_envelope({}, ["search"])

    assert isinstance(strategy.continue_loop(envelope, ToolCall(tool="search")), SendToTool)
    step = strategy.continue_loop(envelope, ToolCall(tool="search"))

    assert isinstance(step, Complete)
    assert step.status is CompletionStatus.MAX_ITERATIONS
    assert step.reason == "max iterations (2) reached"
    assert envelope.state.completed is False
    assert envelope.state.iteration == 2
    assert _actions(envelope)[-1] == "max_iterations_reached"


def test_stop_condition_completes_with_condition_name(envelopes: EnvelopeManager) -> None:
    conditions = StopConditionSet(
        conditions=(PredicateStopCondition(name="confident", predicate=lambda _e, a: (a.confidence or 0) >= 0.8),)
    )
    strategy = ReactStrategy(envelopes=envelopes, stop_conditions=conditions)
    envelope = envelopes.create_envelope({}, ["search"])

    step = strategy.continue_loop(envelope, ToolCall(tool="search", confidence=0.85))

    assert isinstance(step, Complete)
    assert step.status is CompletionStatus.STOP_CONDITION
    assert step.reason == "confident"
    assert envelope.state.completed is True
    assert envelope.tools.history == []


def test_tool_result_is_recorded_and_loop_reenters(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(envelopes=envelopes)
    envelope = envelopes.create_envelope({}, ["search"])
    strategy.continue_loop(envelope, ToolCall(tool="search", input={"q": "x"}))

    step = strategy.handle_tool_result(envelope, {"hits": 2}, duration_ms=15)

    assert isinstance(step, SendToModel)
    assert [item.to_dict() for item in envelope.tools.history] == [
        {
            "iteration": 1,
            "tool": "search",
            "input": {"q": "x"},
            "output": {"hits": 2},
            "durationMs": 15,
            "success": True,
            "error": None,
        }
    ]
    assert step.message["payload"]["context"]["toolHistory"][0]["output"] == {"hits": 2}
    assert "tool_response" in _actions(envelope)


def test_reject_counts_iteration_and_reprompts_with_feedback(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(max_iterations=3, envelopes=envelopes)
    envelope = envelopes.create_envelope({})
    error = ValidationError(ValidationErrorKind.INVALID_JSON, "failed to parse model response as JSON")

    step = strategy.reject(envelope, error)

    assert isinstance(step, SendToModel)
    assert envelope.state.iteration == 1
    assert "failed to parse model response as JSON" in step.message["payload"]["prompt"]
    assert "validation_error" in _actions(envelope)


def test_reject_respects_iteration_bound(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(max_iterations=1, envelopes=envelopes)
    envelope = envelopes.create_envelope({})

    step = strategy.reject(envelope, ValidationError(ValidationErrorKind.INVALID_JSON, "bad"))

    assert isinstance(step, Complete)
    assert step.status is CompletionStatus.MAX_ITERATIONS


def test_reject_fails_when_error_stop_condition_configured(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(envelopes=envelopes, stop_conditions=StopConditionSet(stop_on_error=True))
    envelope = envelopes.create_envelope({})
    error = ValidationError(ValidationErrorKind.UNKNOWN_TOOL, "nope")

    step = strategy.reject(envelope, error)

    assert isinstance(step, Fail)
    assert step.error is error
    assert step.status is CompletionStatus.VALIDATION_ERROR


def test_broken_stop_condition_becomes_execution_error(envelopes: EnvelopeManager) -> None:
    def explode(_envelope, _action) -> bool:
        raise RuntimeError("boom")

    conditions = StopConditionSet(conditions=(PredicateStopCondition(name="explode", predicate=explode),))
    strategy = ReactStrategy(envelopes=envelopes, stop_conditions=conditions)
    envelope = envelopes.create_envelope({}, ["search"])

    step = strategy.continue_loop(envelope, ToolCall(tool="search"))

    assert isinstance(step, Fail)
    assert isinstance(step.error, ExecutionError)
    assert "boom" in str(step.error)
    assert envelope.state.completion_reason is CompletionStatus.EXECUTION_ERROR


def test_custom_prompt_template_placeholders(envelopes: EnvelopeManager) -> None:
    strategy = ReactStrategy(
        max_iterations=4,
        envelopes=envelopes,
        prompt_template="tools={{tools}} it={{iteration}}/{{max_iterations}} in={{input}}",
    )
    envelope = envelopes.create_envelope("hello", ["a", "b"])

    assert strategy.generate_prompt(envelope) == 'tools=- a\n- b it=0/4 in="hello"'


def test_rejects_non_positive_iteration_bound() -> None:
    with pytest.raises(ValueError, match="max_iterations"):
        ReactStrategy(max_iterations=0)


def test_iteration_bound_checked_before_stop_conditions(envelopes: EnvelopeManager) -> None:
    conditions = StopConditionSet(
        conditions=(PredicateStopCondition(name="confident", predicate=lambda _e, a: (a.confidence or 0) >= 0.5),)
    )
    strategy = ReactStrategy(max_iterations=1, envelopes=envelopes, stop_conditions=conditions)
    envelope = envelopes.create_envelope({}, ["search"])

    step = strategy.continue_loop(envelope, ToolCall(tool="search", confidence=0.9))

    assert isinstance(step, Complete)
    assert step.status is CompletionStatus.MAX_ITERATIONS
    assert envelope.state.completed is False
    assert "stop_condition" not in _actions(envelope)
