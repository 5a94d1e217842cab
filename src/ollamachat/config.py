"""Application configuration.

Configuration lives in a YAML file (``configs/config.yaml`` by default).
Values present in the file are merged over the built-in defaults, then a
few environment variables take precedence:

    OLLAMA_BASE_URL        llm.ollama.base_url
    OLLAMACHAT_MODEL       llm.ollama.default_model
    OLLAMACHAT_PROVIDER    llm.provider
    OLLAMACHAT_STORAGE     storage.base_path
    OLLAMACHAT_LOG_LEVEL   app.log_level

``OLLAMACHAT_CONFIG`` selects another configuration file.
"""

import logging
import os
from collections.abc import Mapping
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError

from .errors import ConfigError
from .llm.models import DEFAULT_MAX_TOKENS, DEFAULT_TIMEOUT_SECONDS
from .sessions.models import (
    DEFAULT_MAX_CONTEXT_MESSAGES,
    DEFAULT_MODEL_NAME,
    DEFAULT_PROVIDER,
    DEFAULT_TEMPERATURE,
    StorageConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs") / "config.yaml"
CONFIG_PATH_ENV = "OLLAMACHAT_CONFIG"

ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "OLLAMA_BASE_URL": ("llm", "ollama", "base_url"),
    "OLLAMACHAT_MODEL": ("llm", "ollama", "default_model"),
    "OLLAMACHAT_PROVIDER": ("llm", "provider"),
    "OLLAMACHAT_STORAGE": ("storage", "base_path"),
    "OLLAMACHAT_LOG_LEVEL": ("app", "log_level"),
}


class AppSection(BaseModel):
    name: str = "OllamaChat"
    version: str = "1.0.0"
    log_level: str = "info"


class OllamaSection(BaseModel):
    base_url: str = "http://localhost:11434"
    default_model: str = DEFAULT_MODEL_NAME


class LLMSection(BaseModel):
    provider: str = DEFAULT_PROVIDER
    available_providers: list[str] = Field(default_factory=lambda: [DEFAULT_PROVIDER])
    ollama: OllamaSection = Field(default_factory=OllamaSection)
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=0)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)


class ChatSection(BaseModel):
    max_context_messages: int = Field(default=DEFAULT_MAX_CONTEXT_MESSAGES, ge=0)


class AppConfig(BaseModel):
    """Complete application configuration."""

    app: AppSection = Field(default_factory=AppSection)
    llm: LLMSection = Field(default_factory=LLMSection)
    chat: ChatSection = Field(default_factory=ChatSection)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @property
    def default_model(self) -> str:
        return self.llm.ollama.default_model


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Explicit path, else $OLLAMACHAT_CONFIG, else configs/config.yaml."""
    if path:
        return Path(path)
    env_path = os.getenv(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None
) -> AppConfig:
    """Load configuration, creating a default file when none exists.

    Args:
        path: Configuration file; see resolve_config_path
        environ: Environment used for overrides (default: os.environ)

    Returns:
        Validated AppConfig

    Raises:
        ConfigError: If the file cannot be read, parsed or validated
    """
    config_path = resolve_config_path(path)

    if not config_path.exists():
        save_config(AppConfig(), config_path)
        logger.info("Created default configuration path=%s", config_path)

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"failed to read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file {config_path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"config file {config_path} must contain a mapping")

    merged = _deep_merge(AppConfig().model_dump(), raw)
    _apply_env_overrides(merged, os.environ if environ is None else environ)

    try:
        config = AppConfig.model_validate(merged)
    except ModelValidationError as e:
        raise ConfigError(f"invalid configuration in {config_path}: {e}") from e

    logger.debug("Loaded configuration path=%s provider=%s", config_path, config.llm.provider)
    return config


def save_config(config: AppConfig, path: str | Path) -> Path:
    """Write configuration as YAML.

    Raises:
        ConfigError: If the file cannot be written
    """
    config_path = Path(path)
    text = yaml.safe_dump(
        config.model_dump(mode="json"),
        sort_keys=False,
        default_flow_style=False,
    )
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to write config file {config_path}: {e}") from e
    return config_path


def _apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> None:
    for variable, keys in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if not value:
            continue
        section = data
        for key in keys[:-1]:
            if not isinstance(section.get(key), dict):
                section[key] = {}
            section = section[key]
        section[keys[-1]] = value


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
