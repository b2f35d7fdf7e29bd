"""
Configuration loader for Luvio Chat.

This module provides configuration management with:
- Multiple configuration sources (files, dicts, env vars)
- Schema validation
- Type coercion
- Configuration merging
"""

import os
import json
import yaml
import toml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("luvio-chat.config")


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ClientConfig(BaseModel):
    """Completion service client configuration."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    endpoint: str = "http://localhost:54321/functions/v1/chat"
    api_key: Optional[str] = None
    user_id: Optional[str] = None
    module_id: Optional[str] = None
    system_prompt: Optional[str] = None
    connect_timeout: Optional[float] = 30.0
    # No read timeout unless configured; a stalled stream waits on the transport
    read_timeout: Optional[float] = None

    @field_validator('endpoint')
    @classmethod
    def validate_endpoint(cls, v):
        """Require an http(s) endpoint."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Endpoint must be an http(s) URL: {v}")
        return v


class StreamingConfig(BaseModel):
    """Stream decoding and publishing configuration."""
    publish_interval: float = 0.016  # one animation frame
    max_buffer_size: int = 1024 * 1024  # 1MB carry-over
    chunk_size: int = 8192

    @field_validator('publish_interval')
    @classmethod
    def validate_interval(cls, v):
        if v < 0:
            raise ValueError("publish_interval must not be negative")
        return v


class AttachmentConfig(BaseModel):
    """Attachment encoding configuration."""
    max_concurrency: int = 4
    fetch_timeout: float = 30.0
    max_size: int = 10 * 1024 * 1024  # 10MB

    @field_validator('max_concurrency')
    @classmethod
    def validate_concurrency(cls, v):
        if v < 1:
            raise ValueError("max_concurrency must be at least 1")
        return v


class StorageConfig(BaseModel):
    """Conversation storage configuration."""
    enabled: bool = True
    path: Path = Field(default_factory=lambda: Path.home() / ".luvio-chat" / "conversations.db")

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        """Ensure path is absolute."""
        return Path(v).expanduser().absolute()


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Optional[Path] = None
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class LuvioConfig(BaseModel):
    """Main Luvio Chat configuration."""
    app_name: str = "luvio-chat"
    debug: bool = False

    client: ClientConfig = Field(default_factory=ClientConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )


class ConfigLoader:
    """Configuration loader with multiple source support."""

    env_prefix = "LUVIO_"

    def __init__(self):
        """Initialize configuration loader."""
        self._sources: List[ConfigSource] = []
        self._config: Optional[LuvioConfig] = None

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        # Lowest priority first so later merges win
        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    def load(self, environ: Optional[Dict[str, str]] = None) -> LuvioConfig:
        """
        Load configuration from all sources.

        Args:
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Merged configuration
        """
        merged_data: Dict[str, Any] = {}

        for source in self._sources:
            data = self._load_source(source)
            merged_data = self._deep_merge(merged_data, data)

        env_data = self._load_env_vars(os.environ if environ is None else environ)
        merged_data = self._deep_merge(merged_data, env_data)

        try:
            self._config = LuvioConfig(**merged_data)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field = ".".join(str(x) for x in error["loc"])
                errors.append(f"{field}: {error['msg']}")

            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}"
            ) from e

        logger.info("configuration_loaded", sources=len(self._sources))
        return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text(encoding="utf-8")

        try:
            if source.source_type == "json":
                return json.loads(content)
            elif source.source_type == "yaml":
                return yaml.safe_load(content) or {}
            elif source.source_type == "toml":
                return toml.loads(content)
        except (json.JSONDecodeError, yaml.YAMLError, toml.TomlDecodeError) as e:
            raise ConfigurationError(
                f"Failed to parse {source.path}: {e}", cause=e
            ) from e

        raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _load_env_vars(self, environ: Dict[str, str]) -> Dict[str, Any]:
        """Load configuration from environment variables.

        ``LUVIO_CLIENT__API_KEY=...`` maps to ``{"client": {"api_key": ...}}``.
        """
        result: Dict[str, Any] = {}

        for key, value in environ.items():
            if not key.startswith(self.env_prefix):
                continue

            parts = key[len(self.env_prefix):].lower().split("__")
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})

            current[parts[-1]] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> LuvioConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None
) -> LuvioConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader()

    default_paths = [
        Path.home() / ".luvio-chat" / "config.yaml",
        Path.home() / ".luvio-chat" / "config.json",
        Path("./luvio-chat.yaml"),
        Path("./luvio-chat.toml"),
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return loader.load(environ)


# Export public API
__all__ = [
    'LuvioConfig',
    'ClientConfig',
    'StreamingConfig',
    'AttachmentConfig',
    'StorageConfig',
    'LoggingConfig',
    'ConfigLoader',
    'load_config',
]
