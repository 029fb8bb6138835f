"""agentcore - correlation-routed REACT agent core."""

from .config import NodeConfig, Settings
from .envelope import Envelope, EnvelopeManager
from .node import AgentCoreNode
from .router import RouteKind, RouteResult, SessionRouter
from .strategy import ReactStrategy
from .types import Channel, CompletionStatus
from .validator import FinalAnswer, ModelValidator, ToolCall

__version__ = "0.1.0"

__all__ = [
    "AgentCoreNode",
    "Channel",
    "CompletionStatus",
    "Envelope",
    "EnvelopeManager",
    "FinalAnswer",
    "ModelValidator",
    "NodeConfig",
    "ReactStrategy",
    "RouteKind",
    "RouteResult",
    "SessionRouter",
    "Settings",
    "ToolCall",
]
