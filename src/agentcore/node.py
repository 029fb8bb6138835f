"""Agent core node: the flow-runtime facing orchestrator."""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from typing import Any

import pluggy
from apscheduler.schedulers.base import BaseScheduler
from loguru import logger

from agentcore.bus import BusProtocol, ChannelMessage
from agentcore.config import NodeConfig, Settings
from agentcore.envelope import EnvelopeManager
from agentcore.hook_runtime import HookRuntime
from agentcore.hookspecs import AGENT_CORE_HOOK_NAMESPACE, AgentCoreHookSpecs
from agentcore.plugins import BUILTIN_PLUGINS
from agentcore.reaper import SessionReaper
from agentcore.router import RouteResult, SessionRouter
from agentcore.stop_conditions import StopCondition, build_stop_conditions
from agentcore.strategy import ReactStrategy
from agentcore.types import Channel, Clock, CompletionSink, OutputSink, Outputs

ENTRYPOINT_GROUP = "agentcore"
STRATEGIES: dict[str, type[ReactStrategy]] = {"react": ReactStrategy}


class AgentCoreNode:
    """One configured agent core node.

    Mirrors a flow-runtime node: `receive(msg, send, done)` for every inbound message,
    `close()` on redeploy or shutdown. Everything else is wired from `NodeConfig`.
    """

    def __init__(
        self,
        config: Mapping[str, Any] | NodeConfig | None = None,
        *,
        settings: Settings | None = None,
        plugins: Iterable[object] = (),
        send: OutputSink | None = None,
        clock: Clock = time.time,
        load_entrypoints: bool | None = None,
    ) -> None:
        self.settings = settings or Settings()
        if isinstance(config, NodeConfig):
            self.config = config
        else:
            self.config = NodeConfig.from_mapping(config, self.settings)
        self._clock = clock
        self._failed_plugins: dict[str, str] = {}

        self._plugin_manager = pluggy.PluginManager(AGENT_CORE_HOOK_NAMESPACE)
        self._plugin_manager.add_hookspecs(AgentCoreHookSpecs)
        for name, plugin in BUILTIN_PLUGINS.items():
            self._plugin_manager.register(plugin, name=name)
        if self.settings.load_entrypoint_plugins if load_entrypoints is None else load_entrypoints:
            self._load_entrypoint_plugins()
        for plugin in plugins:
            self._plugin_manager.register(plugin)
        self._hook_runtime = HookRuntime(self._plugin_manager)

        envelopes = EnvelopeManager(clock)
        strategy_cls = STRATEGIES[self.config.strategy]
        self.strategy = strategy_cls(
            max_iterations=self.config.max_iterations,
            stop_conditions=build_stop_conditions(self.config.stop_conditions, self._resolve_stop_condition),
            memory_tools=self.config.memory_tools,
            prompt_template=self.config.model_prompt_template,
            envelopes=envelopes,
            clock=clock,
        )
        self.router = SessionRouter(
            strategy=self.strategy,
            envelopes=envelopes,
            allowed_tools=self.config.tool_names,
            strict_confidence=self.config.strict_confidence,
            session_timeout_seconds=self.config.session_timeout_seconds,
            clock=clock,
            hooks=self._hook_runtime,
            output_sink=send,
            debug=self.config.debug,
        )
        self._reaper: SessionReaper | None = None
        if self.config.debug:
            logger.info(
                "node.configured strategy={} max_iterations={} tools={} stop_conditions={}",
                self.config.strategy,
                self.config.max_iterations,
                self.config.tool_names,
                len(self.strategy.stop_conditions.conditions),
            )

    @property
    def active_sessions(self) -> list[str]:
        return self.router.active_sessions

    @property
    def failed_plugins(self) -> dict[str, str]:
        return dict(self._failed_plugins)

    @property
    def reaper(self) -> SessionReaper | None:
        return self._reaper

    def receive(self, message: Any, send: OutputSink | None = None, done: CompletionSink | None = None) -> RouteResult:
        """Handle one inbound flow message.

        Idle sessions are expired first, so timeouts hold even when no reaper runs.
        """

        self.router.expire()
        return self.router.handle(message, send=send, done=done)

    def start_reaper(self, scheduler: BaseScheduler | None = None) -> SessionReaper | None:
        """Start expiring idle sessions; no-op when no timeout is configured."""

        if self.config.session_timeout_seconds is None:
            return None
        if self._reaper is None:
            self._reaper = SessionReaper(
                self.router,
                interval_seconds=self.settings.reap_interval_seconds,
                scheduler=scheduler,
            )
            self._reaper.start()
        return self._reaper

    def close(self) -> int:
        """Stop the reaper and abandon every live session."""

        if self._reaper is not None:
            self._reaper.stop()
            self._reaper = None
        abandoned = self.router.close()
        if self.config.debug:
            logger.info("node.closed abandoned={}", abandoned)
        return abandoned

    async def handle_bus_once(self, bus: BusProtocol, *, timeout_seconds: float | None = None) -> RouteResult | None:
        """Consume one inbound message from the bus and publish what the node sent."""

        inbound = await bus.next_inbound(timeout_seconds=timeout_seconds)
        if inbound is None:
            return None
        sent: list[ChannelMessage] = []

        def collect(outputs: Outputs) -> None:
            for index, message in enumerate(outputs):
                if message is not None:
                    sent.append(ChannelMessage(channel=Channel(index), message=message))

        result = self.receive(inbound, send=collect)
        for item in sent:
            await bus.publish_outbound(item)
        return result

    def hook_report(self) -> dict[str, list[str]]:
        """Return hook implementation summary for diagnostics."""

        return self._hook_runtime.hook_report()

    def _resolve_stop_condition(self, descriptor: dict[str, Any]) -> StopCondition | None:
        return self._plugin_manager.hook.provide_stop_condition(descriptor=descriptor, clock=self._clock)

    def _load_entrypoint_plugins(self) -> None:
        try:
            self._plugin_manager.load_setuptools_entrypoints(ENTRYPOINT_GROUP)
        except Exception as exc:  # pragma: no cover - depends on installed distributions
            self._failed_plugins[ENTRYPOINT_GROUP] = str(exc)
            logger.opt(exception=True).warning("node.plugin_load_failed group={}", ENTRYPOINT_GROUP)
