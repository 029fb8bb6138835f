"""Model output validation.

The upstream model node does not promise a canonical shape: it may hand back a JSON
string, a fenced JSON block, a provider envelope wrapping the JSON one level down, or
an already-parsed mapping. Everything is normalized here into one of two typed actions
before the control loop sees it. Anything that does not fit is rejected with a
`ValidationError` carrying a machine-readable kind.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from agentcore.envelope import normalize_tool_names
from agentcore.errors import ValidationError, ValidationErrorKind

TOOL_CALL = "tool-call"
FINAL_ANSWER = "final-answer"

_TOOL_KINDS = frozenset({"tool-call", "tool_call", "tool"})
_FINAL_KINDS = frozenset({"final-answer", "final_answer", "final"})
_WRAPPER_KEYS = ("content", "text", "output", "response", "data")
_INPUT_KEYS = ("input", "arguments", "args")
_RESULT_KEYS = ("input", "result", "answer")
_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*\s*\n?(?P<body>.*?)\n?```$", re.DOTALL)
MAX_UNWRAP_DEPTH = 3


class ToolCall(BaseModel):
    """The model asked for one allowed tool to run."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["tool-call"] = TOOL_CALL
    tool: str
    input: Any = Field(default_factory=dict)
    confidence: float | None = None
    message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class FinalAnswer(BaseModel):
    """The model declared the task finished."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["final-answer"] = FINAL_ANSWER
    message: str | None = None
    result: Any = None
    confidence: float | None = None

    @property
    def tool(self) -> None:
        return None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


Action = ToolCall | FinalAnswer


class ModelValidator:
    """Parse raw model output into an allow-list checked `Action`."""

    def __init__(self, allowed_tools: Iterable[str] = (), *, strict: bool = False) -> None:
        self._allowed_tools = normalize_tool_names(allowed_tools)
        self._allowed_set = frozenset(self._allowed_tools)
        self._strict = strict

    @property
    def allowed_tools(self) -> tuple[str, ...]:
        return self._allowed_tools

    @property
    def strict(self) -> bool:
        return self._strict

    def is_tool_allowed(self, name: str) -> bool:
        return name in self._allowed_set

    def parse_and_validate(self, raw: Any) -> Action:
        document = self._coerce_document(raw, depth=0)
        kind = self._action_kind(document)
        confidence = self._confidence(document)
        if kind == TOOL_CALL:
            return self._tool_call(document, confidence)
        return self._final_answer(document, confidence)

    def _coerce_document(self, raw: Any, *, depth: int) -> dict[str, Any]:
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        if isinstance(raw, bytes | bytearray):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ValidationError(ValidationErrorKind.INVALID_JSON, f"model response is not utf-8: {exc}") from exc
        if isinstance(raw, str):
            return self._coerce_document(_parse_json_text(raw), depth=depth)
        if isinstance(raw, Mapping):
            document = dict(raw)
            if "kind" in document or "action" in document:
                return document
            if depth < MAX_UNWRAP_DEPTH:
                for key in _WRAPPER_KEYS:
                    inner = document.get(key)
                    if isinstance(inner, str | Mapping):
                        return self._coerce_document(inner, depth=depth + 1)
            return document
        if raw is not None and not isinstance(raw, type) and hasattr(raw, "__dict__"):
            return dict(vars(raw))
        raise ValidationError(
            ValidationErrorKind.INVALID_SHAPE,
            f"model response must be a JSON object, got {type(raw).__name__}",
        )

    @staticmethod
    def _action_kind(document: Mapping[str, Any]) -> str:
        value = document.get("kind")
        if value is None:
            value = document.get("action")
        if not isinstance(value, str):
            raise ValidationError(
                ValidationErrorKind.INVALID_ACTION,
                'model response must name its action as "tool-call" or "final-answer"',
            )
        normalized = value.strip().lower()
        if normalized in _TOOL_KINDS:
            return TOOL_CALL
        if normalized in _FINAL_KINDS:
            return FINAL_ANSWER
        raise ValidationError(ValidationErrorKind.INVALID_ACTION, f"unsupported action kind: {value!r}")

    def _confidence(self, document: Mapping[str, Any]) -> float | None:
        value = document.get("confidence")
        if value is None:
            if self._strict:
                raise ValidationError(ValidationErrorKind.INVALID_CONFIDENCE, "confidence is required")
            return None
        number = _finite_number(value)
        if number is not None and 0.0 <= number <= 1.0:
            return number
        if self._strict:
            raise ValidationError(
                ValidationErrorKind.INVALID_CONFIDENCE,
                f"confidence must be a number between 0 and 1, got {value!r}",
            )
        logger.warning("validator.confidence_dropped value={!r}", value)
        return None

    def _tool_call(self, document: Mapping[str, Any], confidence: float | None) -> ToolCall:
        tool = document.get("tool")
        if not isinstance(tool, str) or not tool.strip():
            raise ValidationError(ValidationErrorKind.MISSING_TOOL, "tool-call action must name a tool")
        if not self.is_tool_allowed(tool):
            allowed = ", ".join(self._allowed_tools) or "(none)"
            raise ValidationError(
                ValidationErrorKind.UNKNOWN_TOOL,
                f'tool "{tool}" is not in the allowed tools list: [{allowed}]',
            )
        tool_input: Any = {}
        for key in _INPUT_KEYS:
            if key in document and document[key] is not None:
                tool_input = document[key]
                if key != "input" and isinstance(tool_input, str):
                    tool_input = _maybe_json(tool_input)
                break
        message = document.get("message")
        return ToolCall(
            tool=tool,
            input=tool_input,
            confidence=confidence,
            message=message if isinstance(message, str) else None,
        )

    @staticmethod
    def _final_answer(document: Mapping[str, Any], confidence: float | None) -> FinalAnswer:
        message = document.get("message")
        result = next((document[key] for key in _RESULT_KEYS if document.get(key) is not None), None)
        if not isinstance(message, str) or not message:
            if message is not None and result is None and not isinstance(message, str):
                result = message
            message = _message_from(result)
        if message is None and result is None:
            raise ValidationError(
                ValidationErrorKind.MISSING_FINAL_RESULT,
                "final-answer action must carry a message or an input",
            )
        return FinalAnswer(message=message, result=result, confidence=confidence)


def _parse_json_text(text: str) -> Any:
    stripped = text.strip()
    if not stripped:
        raise ValidationError(ValidationErrorKind.INVALID_JSON, "model response is empty")
    if match := _FENCE_RE.match(stripped):
        stripped = match.group("body").strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise ValidationError(
            ValidationErrorKind.INVALID_JSON,
            f"failed to parse model response as JSON: {exc.msg}",
        ) from exc


def _maybe_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _message_from(result: Any) -> str | None:
    if isinstance(result, str) and result:
        return result
    if isinstance(result, Mapping):
        message = result.get("message")
        if isinstance(message, str) and message:
            return message
    return None
