"""Stop conditions evaluated once per REACT iteration."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

from loguru import logger

from agentcore.errors import ConfigurationError
from agentcore.types import Clock
from agentcore.validator import Action, FinalAnswer

if TYPE_CHECKING:
    from agentcore.envelope import Envelope

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_TYPE_ALIASES = {
    "max_iterations": "iteration_limit",
    "goal_achieved": "final_answer",
    "confidence": "confidence_threshold",
}
_VALUE_REQUIRED = frozenset({"iteration_limit", "confidence_threshold", "timeout"})
_TRUTHY = frozenset({"", "true", "1", "yes", "on"})
ERROR_TYPE = "error"


class StopCondition(Protocol):
    name: str

    def __call__(self, envelope: Envelope, action: Action) -> bool: ...


@dataclass(frozen=True)
class PredicateStopCondition:
    name: str
    predicate: Callable[[Envelope, Action], bool]

    def __call__(self, envelope: Envelope, action: Action) -> bool:
        return bool(self.predicate(envelope, action))


@dataclass(frozen=True)
class StopConditionSet:
    conditions: tuple[StopCondition, ...] = ()
    stop_on_error: bool = False

    def first_match(self, envelope: Envelope, action: Action) -> StopCondition | None:
        for condition in self.conditions:
            if condition(envelope, action):
                return condition
        return None


StopConditionResolver: TypeAlias = Callable[[dict[str, Any]], StopCondition | None]


def normalize_type(raw: Any) -> str:
    """Map editor spellings (`maxIterations`, `goal-achieved`) to one snake_case type."""

    text = str(raw or "").strip()
    if text != text.upper():
        text = _CAMEL_RE.sub("_", text)
    text = text.replace("-", "_").lower()
    return _TYPE_ALIASES.get(text, text)


def build_stop_conditions(
    descriptors: Iterable[Any],
    resolve: StopConditionResolver,
) -> StopConditionSet:
    """Turn configured descriptors and callables into a `StopConditionSet`.

    `resolve` receives a normalized `{type, value}` descriptor and returns a condition,
    or None when no provider knows the type.
    """

    conditions: list[StopCondition] = []
    stop_on_error = False
    for index, descriptor in enumerate(descriptors):
        if callable(descriptor) and not isinstance(descriptor, Mapping):
            if isinstance(getattr(descriptor, "name", None), str):
                conditions.append(descriptor)
            else:
                name = str(getattr(descriptor, "__name__", f"condition_{index}"))
                conditions.append(PredicateStopCondition(name=name, predicate=descriptor))
            continue
        if not isinstance(descriptor, Mapping):
            raise ConfigurationError(f"stop condition #{index} must be a mapping or callable, got {descriptor!r}")

        normalized = {**descriptor, "type": normalize_type(descriptor.get("type"))}
        value = normalized.get("value")
        condition_type = normalized["type"]
        if not condition_type:
            raise ConfigurationError(f"stop condition #{index} has no type")
        if condition_type == ERROR_TYPE:
            stop_on_error = stop_on_error or _truthy(value)
            continue
        if condition_type in _VALUE_REQUIRED and _blank(value):
            logger.warning("stop_conditions.skipped_blank type={} index={}", condition_type, index)
            continue

        condition = resolve(normalized)
        if condition is None:
            raise ConfigurationError(f"unknown stop condition type: {descriptor.get('type')!r}")
        conditions.append(condition)
    return StopConditionSet(conditions=tuple(conditions), stop_on_error=stop_on_error)


def builtin_stop_condition(descriptor: Mapping[str, Any], clock: Clock) -> StopCondition | None:
    """Built-in descriptor types; returns None for types it does not own."""

    condition_type = normalize_type(descriptor.get("type"))
    value = descriptor.get("value")

    if condition_type == "final_answer":
        return PredicateStopCondition(
            name="final_answer",
            predicate=lambda _envelope, action: isinstance(action, FinalAnswer),
        )

    if condition_type == "confidence_threshold":
        threshold = _number(value, condition_type)

        def _confident(_envelope: Envelope, action: Action) -> bool:
            return action.confidence is not None and action.confidence >= threshold

        return PredicateStopCondition(name=f"confidence_threshold>={threshold:g}", predicate=_confident)

    if condition_type == "iteration_limit":
        limit = int(_number(value, condition_type))
        if limit <= 0:
            raise ConfigurationError(f"iteration_limit must be positive, got {value!r}")
        return PredicateStopCondition(
            name=f"iteration_limit>={limit}",
            predicate=lambda envelope, _action: envelope.state.iteration >= limit,
        )

    if condition_type == "timeout":
        seconds = _number(value, condition_type)

        def _elapsed(envelope: Envelope, _action: Action) -> bool:
            return clock() - envelope.observability.started_at >= seconds

        return PredicateStopCondition(name=f"timeout>={seconds:g}s", predicate=_elapsed)

    return None


def _number(value: Any, condition_type: str) -> float:
    try:
        return float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{condition_type} needs a numeric value, got {value!r}") from exc


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return True
    return str(value).strip().lower() in _TRUTHY
