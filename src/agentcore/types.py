"""Framework-neutral data aliases and channel layout."""

from __future__ import annotations

from collections.abc import Callable
from enum import IntEnum, StrEnum
from typing import Any, Protocol, TypeAlias

Message: TypeAlias = dict[str, Any]
Outputs: TypeAlias = list[Message | None]
Clock: TypeAlias = Callable[[], float]


class Channel(IntEnum):
    """Positional output ports of the agent core node."""

    MODEL = 0
    TOOL = 1
    MEMORY = 2
    RESULT = 3
    RAW_MODEL_RESPONSE = 4

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", "-")


CHANNEL_COUNT = len(Channel)


class CorrelationType(StrEnum):
    MODEL_RESPONSE = "model_response"
    TOOL_RESPONSE = "tool_response"


class CompletionStatus(StrEnum):
    """Terminal reason recorded on the envelope."""

    FINAL_ANSWER = "final_answer"
    STOP_CONDITION = "stop_condition"
    MAX_ITERATIONS = "max_iterations"
    UPSTREAM_ERROR = "upstream_error"
    EXECUTION_ERROR = "execution_error"
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"


class OutputSink(Protocol):
    """Flow-runtime style send: one positional slot per channel."""

    def __call__(self, outputs: Outputs) -> None: ...


class CompletionSink(Protocol):
    """Flow-runtime style done callback."""

    def __call__(self, error: Exception | None = None) -> None: ...


def route_to(channel: Channel, message: Message) -> Outputs:
    """Build a positional output list with exactly one populated slot."""

    outputs: Outputs = [None] * CHANNEL_COUNT
    outputs[channel] = message
    return outputs
