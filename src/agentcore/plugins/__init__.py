"""Builtin hook implementations registered on every agent core node."""

from __future__ import annotations

from agentcore.plugins.observer import plugin as observer_plugin
from agentcore.plugins.stop_conditions import plugin as stop_conditions_plugin

BUILTIN_PLUGINS = {
    "builtin:stop-conditions": stop_conditions_plugin,
    "builtin:observer": observer_plugin,
}

__all__ = ["BUILTIN_PLUGINS"]
