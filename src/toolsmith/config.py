"""
Configuration for Toolsmith.

Configuration is a tree of Pydantic models loaded from YAML. A handful of
environment variables, read with pydantic-settings, override the file:

    TOOLSMITH_DATA_DIR     Where the database, capability files and key live
    TOOLSMITH_SECRET_KEY   Encryption key for capability secrets
    TOOLSMITH_MODEL        Model name for the chat backend
    TOOLSMITH_OLLAMA_URL   Base URL of the Ollama server
    TAVILY_API_KEY         Enables the web_search tool

Example config.yaml:
    data_dir: ./.toolsmith
    model:
      model: qwen2.5:7b
    builder:
      max_rounds: 25
"""

import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolsmith.errors import ConfigError


class ModelConfig(BaseModel):
    """Chat model backend settings."""

    model_config = ConfigDict(frozen=True, extra="forbid", protected_namespaces=())

    base_url: str = Field(default="http://localhost:11434")
    model: str = Field(default="qwen2.5:7b")
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_delay_seconds: float = Field(default=1.0, ge=0)
    temperature: float = Field(default=0.2, ge=0, le=2)


class LoopConfig(BaseModel):
    """Interactive agentic loop settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_rounds: int = Field(default=10, gt=0)
    history_limit: int = Field(default=20, gt=0)
    max_tokens: int = Field(default=1024, gt=0)
    parallel_tool_calls: bool = Field(default=True)


class BuilderConfig(BaseModel):
    """Capability builder settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_rounds: int = Field(default=25, gt=0)
    max_tokens: int = Field(default=4096, gt=0)
    ask_timeout_seconds: float = Field(default=60.0, gt=0)
    secret_timeout_seconds: float = Field(default=120.0, gt=0)
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    workers: int = Field(default=2, gt=0)


class SandboxConfig(BaseModel):
    """Sandbox lifetimes and per-call timeouts, in seconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    build_lifetime_seconds: float = Field(default=600.0, gt=0)
    execute_lifetime_seconds: float = Field(default=180.0, gt=0)
    code_timeout_seconds: float = Field(default=30.0, gt=0)
    command_timeout_seconds: float = Field(default=120.0, gt=0)
    install_timeout_seconds: float = Field(default=120.0, gt=0)
    run_timeout_seconds: float = Field(default=60.0, gt=0)
    python: str = Field(default_factory=lambda: sys.executable)
    max_output_bytes: int = Field(default=1024 * 1024, gt=0)


class ToolsmithConfig(BaseModel):
    """
    Complete Toolsmith configuration.

    Attributes:
        data_dir: Root directory for all persisted state
        db_path: SQLite database path (defaults to <data_dir>/toolsmith.db)
        secret_key: Encryption key; generated under data_dir when unset
        tavily_api_key: API key for web_search
        model: Chat model settings
        loop: Interactive loop settings
        builder: Builder settings
        sandbox: Sandbox settings
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    data_dir: Path = Field(default=Path(".toolsmith"))
    db_path: Path | None = Field(default=None)
    secret_key: str | None = Field(default=None, repr=False)
    tavily_api_key: str | None = Field(default=None, repr=False)
    model: ModelConfig = Field(default_factory=ModelConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    builder: BuilderConfig = Field(default_factory=BuilderConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)

    @property
    def database_path(self) -> Path:
        """Resolved database path."""
        return self.db_path or self.data_dir / "toolsmith.db"

    @property
    def capabilities_dir(self) -> Path:
        """Directory holding one subdirectory per capability."""
        return self.data_dir / "capabilities"

    @property
    def key_path(self) -> Path:
        """File the generated encryption key is persisted to."""
        return self.data_dir / "secret.key"


class EnvironmentSettings(BaseSettings):
    """
    Environment variables that override file configuration.

    Read by pydantic-settings; unset and empty variables are ignored.
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_", env_ignore_empty=True, extra="ignore", frozen=True
    )

    data_dir: Path | None = None
    secret_key: str | None = Field(default=None, repr=False)
    model: str | None = None
    ollama_url: str | None = None
    tavily_api_key: str | None = Field(
        default=None, repr=False, validation_alias="TAVILY_API_KEY"
    )

    def overrides(self) -> dict[str, Any]:
        """The set variables as a partial config mapping."""
        data = self.model_dump(
            include={"data_dir", "secret_key", "tavily_api_key"}, exclude_none=True
        )
        model: dict[str, Any] = {}
        if self.model:
            model["model"] = self.model
        if self.ollama_url:
            model["base_url"] = self.ollama_url
        if model:
            data["model"] = model
        return data


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def build_config(data: dict[str, Any] | None = None, source: str = "<memory>") -> ToolsmithConfig:
    """
    Validate raw config data with environment overrides applied.

    Args:
        data: Parsed YAML mapping (or None for defaults)
        source: Where the data came from, for error messages

    Raises:
        ConfigError: If the data does not validate
    """
    if data is not None and not isinstance(data, dict):
        raise ConfigError(path=source, message=f"Config must be a mapping: {source}")
    try:
        merged = _merge(data or {}, EnvironmentSettings().overrides())
        return ToolsmithConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(path=source, message=f"Invalid configuration in {source}: {e}") from e


def load_config(path: Path | str | None = None) -> ToolsmithConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML file, or None for defaults plus environment

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the YAML doesn't match the schema
    """
    if path is None:
        return build_config(None)
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)
    return build_config(data, source=str(path))


def load_config_from_string(content: str) -> ToolsmithConfig:
    """Load configuration from a YAML string."""
    return build_config(yaml.safe_load(content))
