# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Migrator Configuration System

Configuration is merged from (later wins):
- ~/.flowmigrate/config.yaml
- .flowmigrate.yaml in the current directory
- an explicit config file
- environment variables (SOURCE_N8N_*, TARGET_N8N_*, FLOWMIGRATE_*)
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError

logger = logging.getLogger("flowmigrate.config")


# ============================================================================
# Configuration Models
# ============================================================================


class InstanceConfig(BaseModel):
    """One n8n instance"""

    base_url: Optional[str] = Field(default=None, description="Instance base URL")
    api_key: Optional[str] = Field(default=None, description="Public API key")
    timeout_seconds: float = Field(
        default=30.0, description="HTTP request timeout (seconds)", gt=0
    )
    max_retries: int = Field(default=3, description="HTTP max retries", ge=0)
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/") if v else v

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)


class TransferConfig(BaseModel):
    """Defaults for a transfer run"""

    skip_errors: bool = Field(default=True, description="Continue past failed uploads")
    strict_validation: bool = Field(
        default=True, description="Abort on duplicates or dangling references"
    )
    strict_references: bool = Field(
        default=False, description="Abort when a reference cannot be remapped"
    )
    concurrency: int = Field(default=5, description="Max in-flight uploads", ge=1)
    resume: bool = Field(default=True, description="Skip workflows migrated earlier")
    skip_existing: bool = Field(
        default=False, description="Reuse destination workflows with the same name"
    )
    verify: bool = Field(default=True, description="Verify after upload")


class PathsConfig(BaseModel):
    """Path configuration"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    state_dir: Path = Field(
        default_factory=lambda: Path.cwd() / ".flowmigrate",
        description="Directory for mapping and history files",
    )
    mapping_file: str = Field(default="id-mappings.json", description="ID mapping file")
    history_file: str = Field(default="upload-history.jsonl", description="History file")
    log_dir: Path = Field(
        default_factory=lambda: Path.home() / ".flowmigrate" / "logs",
        description="Log files directory",
    )

    @field_validator("state_dir", "log_dir", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert strings to Path objects"""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @property
    def mapping_path(self) -> Path:
        return self.state_dir / self.mapping_file

    @property
    def history_path(self) -> Path:
        return self.state_dir / self.history_file


class ObservabilityConfig(BaseModel):
    """Observability configuration"""

    log_level: str = Field(default="INFO", description="Logging level")
    file_logs: bool = Field(default=True, description="Write rotating log files")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper


class MigratorConfig(BaseModel):
    """Complete migrator configuration"""

    source: InstanceConfig = Field(default_factory=InstanceConfig)
    target: InstanceConfig = Field(default_factory=InstanceConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# ============================================================================
# Configuration Loader
# ============================================================================


def _env_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


class ConfigLoader:
    """Load configuration from multiple sources"""

    # env var -> (section, key, converter)
    ENV_VARS = {
        "SOURCE_N8N_URL": ("source", "base_url", str),
        "SOURCE_N8N_API_KEY": ("source", "api_key", str),
        "TARGET_N8N_URL": ("target", "base_url", str),
        "TARGET_N8N_API_KEY": ("target", "api_key", str),
        "FLOWMIGRATE_HTTP_TIMEOUT": ("target", "timeout_seconds", float),
        "FLOWMIGRATE_HTTP_RETRIES": ("target", "max_retries", int),
        "FLOWMIGRATE_CONCURRENCY": ("transfer", "concurrency", int),
        "FLOWMIGRATE_SKIP_ERRORS": ("transfer", "skip_errors", _env_bool),
        "FLOWMIGRATE_SKIP_EXISTING": ("transfer", "skip_existing", _env_bool),
        "FLOWMIGRATE_STATE_DIR": ("paths", "state_dir", str),
        "FLOWMIGRATE_LOG_DIR": ("paths", "log_dir", str),
        "FLOWMIGRATE_LOG_LEVEL": ("observability", "log_level", str),
    }

    @staticmethod
    def load_from_env() -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}
        for var, (section, key, convert) in ConfigLoader.ENV_VARS.items():
            value = os.getenv(var)
            if not value:
                continue
            try:
                config.setdefault(section, {})[key] = convert(value)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {var}: {value!r}", cause=e)

        if _env_bool(os.getenv("FLOWMIGRATE_NO_FILE_LOGS", "false")):
            config.setdefault("observability", {})["file_logs"] = False
        return config

    @staticmethod
    def load_from_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file"""
        if not file_path.exists():
            return {}

        try:
            with open(file_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config file {file_path}", cause=e)

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {file_path} must contain a mapping")
        return data

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result: Dict[str, Any] = {}
        for config in configs:
            for key, value in config.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = ConfigLoader.merge_configs(result[key], value)
                else:
                    result[key] = value
        return result


def default_locations() -> list:
    return [
        Path.home() / ".flowmigrate" / "config.yaml",
        Path.cwd() / ".flowmigrate.yaml",
    ]


def load_config(
    config_file: Optional[Path] = None, env_override: bool = True
) -> MigratorConfig:
    """
    Load configuration from all sources

    Args:
        config_file: Optional specific config file to load
        env_override: Whether environment variables override file config

    Raises:
        ConfigError: unreadable file or values that fail validation
    """
    configs = []

    for location in default_locations():
        file_config = ConfigLoader.load_from_file(location)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {location}")

    if config_file:
        config_file = Path(config_file)
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        file_config = ConfigLoader.load_from_file(config_file)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_file}")

    if env_override:
        env_config = ConfigLoader.load_from_env()
        if env_config:
            configs.append(env_config)
            logger.debug("Loaded config from environment")

    merged = ConfigLoader.merge_configs(*configs) if configs else {}

    try:
        return MigratorConfig(**merged)
    except ValidationError as e:
        raise ConfigError("Config validation failed", details={"errors": e.errors()}, cause=e)


def ensure_directories(config: MigratorConfig) -> None:
    """Create the state directory (log_dir is created by setup_logging)"""
    config.paths.state_dir.mkdir(parents=True, exist_ok=True)
