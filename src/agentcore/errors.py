"""Application-level exception types for agentcore."""

from __future__ import annotations

from enum import StrEnum


class AgentCoreError(Exception):
    """Base exception for agentcore."""

    code = "AGENT_CORE_ERROR"


class ConfigurationError(AgentCoreError):
    """Raised when node configuration or stop-condition descriptors are invalid."""

    code = "CONFIGURATION_ERROR"


class ValidationErrorKind(StrEnum):
    INVALID_JSON = "invalid_json"
    INVALID_SHAPE = "invalid_shape"
    INVALID_ACTION = "invalid_action"
    MISSING_TOOL = "missing_tool"
    UNKNOWN_TOOL = "unknown_tool"
    MISSING_FINAL_RESULT = "missing_final_result"
    INVALID_CONFIDENCE = "invalid_confidence"


class ValidationError(AgentCoreError):
    """Raised when raw model output cannot be turned into an allowed action."""

    code = "VALIDATION_ERROR"

    def __init__(self, kind: ValidationErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class UpstreamError(AgentCoreError):
    """A model or tool collaborator reported a failure in-band."""

    code = "UPSTREAM_ERROR"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class ExecutionError(AgentCoreError):
    """Unexpected failure while running the loop or building outbound messages."""

    code = "EXECUTION_ERROR"


class SessionTimeoutError(AgentCoreError):
    """A session waited longer than its configured timeout for a resume."""

    code = "SESSION_TIMEOUT"


def error_payload(error: Exception) -> dict[str, str]:
    """Render an exception as the `{code, message}` shape used on the wire."""

    code = getattr(error, "code", None) or AgentCoreError.code
    message = getattr(error, "message", None) or str(error) or type(error).__name__
    payload = {"code": str(code), "message": str(message)}
    kind = getattr(error, "kind", None)
    if kind is not None:
        payload["kind"] = str(kind)
    return payload
