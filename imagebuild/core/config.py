"""Configuration settings for the image build service.

Defaults come from the environment. A configuration file (JSON or YAML) may
override them; its keys are the upper-case names listed in ``CONFIG_KEYS``
and a value starting with ``$`` names an environment variable to read it
from, e.g. ``{"REGISTRY_PASSWORD": "$REGISTRY_PASSWORD"}``.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..common.errors import ConfigError

logger = logging.getLogger(__name__)

BackendKind = Literal["local", "rest"]


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    return float(value) if value else None


class BuilderConfig(BaseModel):
    """Configuration settings for building images."""

    model_config = ConfigDict(validate_default=True)

    # Backend settings
    backend: BackendKind = Field(default_factory=lambda: os.environ.get("IMAGEBUILD_BACKEND", "local"))
    docker_binary: str = Field(default_factory=lambda: os.environ.get("DOCKER_BINARY", "docker"))
    build_timeout: Optional[float] = Field(
        default_factory=lambda: _env_float("BUILD_TIMEOUT"),
        description="Seconds before a build is abandoned; None waits indefinitely.",
    )
    disable_buildkit: bool = Field(default_factory=lambda: _env_bool("DOCKER_BUILDKIT_DISABLED", True))
    staging_dir_base: Optional[str] = Field(
        default_factory=lambda: os.environ.get("STAGING_DIR_BASE") or None,
        description="Parent directory for staging directories; the system temp dir when unset.",
    )

    # Engine settings
    engine_use_ssl: bool = Field(default_factory=lambda: _env_bool("ENGINE_USE_SSL"))
    engine_host: str = Field(
        default_factory=lambda: os.environ.get("ENGINE_HOST", ""),
        description="Engine host; empty means the local unix socket.",
    )
    engine_port: int = Field(default_factory=lambda: _env_int("ENGINE_PORT", 2375))
    engine_user_id: str = Field(default_factory=lambda: os.environ.get("ENGINE_USERID", ""))
    engine_password: str = Field(default_factory=lambda: os.environ.get("ENGINE_PASSWORD", ""))

    # Registry settings
    no_registry: bool = Field(
        default_factory=lambda: _env_bool("NO_REGISTRY"),
        description="Skip the registry existence check (test setups only).",
    )
    registry_host: str = Field(default_factory=lambda: os.environ.get("REGISTRY_HOST", ""))
    registry_port: int = Field(default_factory=lambda: _env_int("REGISTRY_PORT", 5000))
    registry_user_id: str = Field(default_factory=lambda: os.environ.get("REGISTRY_USERID", ""))
    registry_password: str = Field(default_factory=lambda: os.environ.get("REGISTRY_PASSWORD", ""))
    registry_use_ssl: bool = Field(default_factory=lambda: _env_bool("REGISTRY_USE_SSL"))

    @field_validator("engine_port", "registry_port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"Port {value} is out of range.")
        return value

    @field_validator("build_timeout")
    @classmethod
    def _validate_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("Build timeout must be positive.")
        return value

    @property
    def registry_enabled(self) -> bool:
        return not self.no_registry and bool(self.registry_host)


CONFIG_KEYS: Dict[str, str] = {
    "IMAGEBUILD_BACKEND": "backend",
    "DOCKER_BINARY": "docker_binary",
    "BUILD_TIMEOUT": "build_timeout",
    "DOCKER_BUILDKIT_DISABLED": "disable_buildkit",
    "STAGING_DIR_BASE": "staging_dir_base",
    "ENGINE_USE_SSL": "engine_use_ssl",
    "ENGINE_HOST": "engine_host",
    "ENGINE_PORT": "engine_port",
    "ENGINE_USERID": "engine_user_id",
    "ENGINE_PASSWORD": "engine_password",
    "NO_REGISTRY": "no_registry",
    "REGISTRY_HOST": "registry_host",
    "REGISTRY_PORT": "registry_port",
    "REGISTRY_USERID": "registry_user_id",
    "REGISTRY_PASSWORD": "registry_password",
    "REGISTRY_USE_SSL": "registry_use_ssl",
}


def substitute_env_value(raw_value: Any) -> Any:
    """Replace ``$NAME`` with the value of environment variable NAME."""
    if not isinstance(raw_value, str) or not raw_value.startswith("$"):
        return raw_value
    name = raw_value[1:]
    value = os.environ.get(name)
    if value is None:
        raise ConfigError(f"Did not find environment variable {name}")
    return value


def load_builder_config(path: Union[str, Path]) -> BuilderConfig:
    """Load configuration overrides from a JSON or YAML file."""
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read configuration file {config_path}: {exc}") from exc

    try:
        if config_path.suffix.lower() in {".yaml", ".yml"}:
            entries = yaml.safe_load(text) or {}
        else:
            entries = json.loads(text)
    except (yaml.YAMLError, ValueError) as exc:
        raise ConfigError(f"Could not parse configuration file {config_path}: {exc}") from exc

    if not isinstance(entries, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping.")

    overrides: Dict[str, Any] = {}
    for key, raw_value in entries.items():
        field_name = CONFIG_KEYS.get(str(key).upper())
        if field_name is None:
            logger.debug("Ignoring unknown configuration key %s", key)
            continue
        overrides[field_name] = substitute_env_value(raw_value)

    try:
        config = BuilderConfig(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_path}: {exc}") from exc
    logger.info("Loaded configuration from %s", config_path)
    return config
