"""Builtin stop-condition descriptor types."""

from __future__ import annotations

from typing import Any

from agentcore.hookspecs import hookimpl
from agentcore.stop_conditions import StopCondition, builtin_stop_condition
from agentcore.types import Clock


class BuiltinStopConditions:
    @hookimpl(trylast=True)
    def provide_stop_condition(self, descriptor: dict[str, Any], clock: Clock) -> StopCondition | None:
        return builtin_stop_condition(descriptor, clock)


plugin = BuiltinStopConditions()
