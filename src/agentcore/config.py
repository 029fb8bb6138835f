"""Configuration management for agentcore."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-level defaults, read from `AGENT_CORE_*` variables and `.env`."""

    # Agent defaults
    max_iterations: PositiveInt = Field(default=5, description="Default iteration bound for new nodes")
    strict_confidence: bool = Field(default=False, description="Reject invalid confidence instead of dropping it")
    session_timeout_seconds: float | None = Field(
        default=600.0, description="Idle seconds before a suspended session is expired; None disables"
    )
    reap_interval_seconds: float = Field(default=30.0, gt=0, description="How often the reaper sweeps sessions")
    load_entrypoint_plugins: bool = Field(default=True, description="Load plugins from the agentcore entry points")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_profile: Literal["default", "pretty"] = Field(default="default", description="Log output profile")

    model_config = SettingsConfigDict(
        env_prefix="AGENT_CORE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class NodeConfig(BaseModel):
    """Per-node options as saved by the flow editor.

    Keys arrive camelCase from the editor; snake_case is accepted too. Unknown keys
    (node id, wires, coordinates) are ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    strategy: Literal["react"] = "react"
    max_iterations: PositiveInt = Field(default=5, alias="maxIterations")
    allowed_tools: list[str] = Field(default_factory=list, alias="allowedTools")
    memory_tools: list[str] = Field(default_factory=list, alias="memoryTools")
    stop_conditions: list[Any] = Field(default_factory=list, alias="stopConditions")
    debug: bool = False
    model_prompt_template: str = Field(default="", alias="modelPromptTemplate")
    strict_confidence: bool = Field(default=False, alias="strictConfidence")
    session_timeout_seconds: float | None = Field(default=None, alias="sessionTimeout")

    @field_validator("strategy", mode="before")
    @classmethod
    def _normalize_strategy(cls, value: Any) -> Any:
        if value is None or value == "":
            return "react"
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("allowed_tools", "memory_tools", mode="before")
    @classmethod
    def _split_tool_names(cls, value: Any) -> Any:
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, list | tuple | set | frozenset):
            return [str(item).strip() for item in value if str(item).strip()]
        return value

    @field_validator("stop_conditions", mode="before")
    @classmethod
    def _default_stop_conditions(cls, value: Any) -> Any:
        if value is None or value == "":
            return []
        if isinstance(value, Mapping) or callable(value):
            return [value]
        return value

    @field_validator("model_prompt_template", mode="before")
    @classmethod
    def _default_template(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("session_timeout_seconds", mode="before")
    @classmethod
    def _blank_timeout(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any] | None, settings: Settings | None = None) -> NodeConfig:
        """Build node options, filling blanks from process settings."""

        settings = settings or Settings()
        data = {key: value for key, value in dict(config or {}).items() if value is not None and value != ""}
        defaults: dict[str, Any] = {
            "max_iterations": settings.max_iterations,
            "strict_confidence": settings.strict_confidence,
            "session_timeout_seconds": settings.session_timeout_seconds,
        }
        for field_name, value in defaults.items():
            alias = cls.model_fields[field_name].alias
            if field_name not in data and alias not in data:
                data[field_name] = value
        return cls.model_validate(data)

    @property
    def tool_names(self) -> list[str]:
        """Every tool the validator accepts: regular tools then memory tools."""

        return list(dict.fromkeys([*self.allowed_tools, *self.memory_tools]))


def get_settings() -> Settings:
    """Get application settings."""

    return Settings()
