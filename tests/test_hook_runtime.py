from __future__ import annotations

from typing import Any

import pluggy

from agentcore.hook_runtime import HookRuntime
from agentcore.hookspecs import AGENT_CORE_HOOK_NAMESPACE, AgentCoreHookSpecs, hookimpl


def _runtime(*plugins: tuple[str, object]) -> HookRuntime:
    manager = pluggy.PluginManager(AGENT_CORE_HOOK_NAMESPACE)
    manager.add_hookspecs(AgentCoreHookSpecs)
    for name, plugin in plugins:
        manager.register(plugin, name=name)
    return HookRuntime(manager)


class ErrorSpy:
    def __init__(self) -> None:
        self.errors: list[tuple[str, str]] = []

    @hookimpl
    def on_error(self, stage: str, error: Exception, message: Any) -> None:
        self.errors.append((stage, str(error)))


def test_call_first_returns_first_non_none_in_precedence_order() -> None:
    class Low:
        @hookimpl
        def provide_stop_condition(self, descriptor: dict[str, Any], clock: Any) -> Any:
            return "low"

    class High:
        @hookimpl
        def provide_stop_condition(self, descriptor: dict[str, Any], clock: Any) -> Any:
            return "high"

    class Abstains:
        @hookimpl
        def provide_stop_condition(self, descriptor: dict[str, Any], clock: Any) -> Any:
            return None

    runtime = _runtime(("low", Low()), ("high", High()), ("abstains", Abstains()))

    assert runtime.call_first("provide_stop_condition", descriptor={"type": "x"}, clock=lambda: 0.0) == "high"


def test_failing_impl_is_skipped_and_reported() -> None:
    class Broken:
        @hookimpl
        def dispatch_output(self, channel: Any, message: Any, trace_id: Any) -> None:
            raise RuntimeError("observer broke")

    class Healthy:
        @hookimpl
        def dispatch_output(self, channel: Any, message: Any, trace_id: Any) -> str:
            return "seen"

    spy = ErrorSpy()
    runtime = _runtime(("spy", spy), ("broken", Broken()), ("healthy", Healthy()))

    results = runtime.call_many("dispatch_output", channel=0, message={"a": 1}, trace_id="t")

    assert results == ["seen"]
    assert spy.errors == [("dispatch_output:broken", "observer broke")]


def test_async_impl_is_skipped() -> None:
    class AsyncObserver:
        @hookimpl
        async def on_session_start(self, envelope: Any) -> None:
            return None

    runtime = _runtime(("async", AsyncObserver()))

    assert runtime.call_many("on_session_start", envelope=object()) == []


def test_failing_error_observer_is_swallowed() -> None:
    class BrokenObserver:
        @hookimpl
        def on_error(self, stage: str, error: Exception, message: Any) -> None:
            raise RuntimeError("observer of observers broke")

    runtime = _runtime(("broken", BrokenObserver()))

    runtime.notify_error(stage="send", error=ValueError("x"), message=None)


def test_hook_report_lists_plugins() -> None:
    spy = ErrorSpy()
    runtime = _runtime(("spy", spy))

    assert runtime.hook_report() == {"on_error": ["spy"]}
