"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Configuration management for ResultSync.

This module provides a central location for all configuration settings in ResultSync.
It handles environment variables, default values, and validation of configuration
parameters for the parser, the submission orchestrator, the remote client and logging.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, ClassVar, Never

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.testfiesta.com"


class BaseConfig(BaseModel):
    """Base configuration class with common functionality."""

    # Class variable to store environment variable prefixes
    ENV_PREFIX: ClassVar[str] = "RESULTSYNC_"

    @classmethod
    def from_env(cls, **overrides) -> Never:
        """
        Create a configuration instance from environment variables.

        Args:
        ----
            **overrides: Key-value pairs that override environment variables

        Returns:
        -------
            An instance of the configuration class

        """
        raise NotImplementedError("Subclasses must implement from_env method")

    @classmethod
    def get_env_var(cls, key: str, default: Any = None) -> Any:
        """
        Get an environment variable with the class prefix.

        Args:
        ----
            key: Key name without prefix
            default: Default value if environment variable is not found

        Returns:
        -------
            The environment variable value or default

        """
        env_key = f"{cls.ENV_PREFIX}{key.upper()}"
        return os.environ.get(env_key, default)

    @classmethod
    def get_env_bool(cls, key: str, default: bool = False) -> bool:
        """Read a boolean flag from the environment."""
        value = cls.get_env_var(key)
        if value is None:
            return default
        return str(value).lower() in ("true", "1", "yes", "on")


class LoggingConfig(BaseConfig):
    """Configuration for logging settings."""

    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    use_rich: bool = Field(
        default=True,
        description="Whether to use rich for console logging",
    )
    log_file: str | None = Field(
        default=None,
        description="Path to the log file (None for console-only logging)",
    )
    json_format: bool = Field(
        default=False,
        description="Whether to use JSON format for logs",
    )
    redact_sensitive: bool = Field(
        default=True,
        description="Whether to redact api keys, tokens and passwords from log messages",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, value):
        """Validate that the log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        value = value.upper()
        if value not in valid_levels:
            logger.warning(f"Invalid log level '{value}', defaulting to INFO")
            return "INFO"
        return value

    @classmethod
    def from_env(cls, **overrides) -> "LoggingConfig":
        """Create a logging configuration from environment variables."""
        config = {
            "level": cls.get_env_var("LOG_LEVEL", "INFO"),
            "use_rich": cls.get_env_bool("LOG_USE_RICH", True),
            "log_file": cls.get_env_var("LOG_FILE", None),
            "json_format": cls.get_env_bool("LOG_JSON", False),
        }
        config.update(overrides)
        return cls(**config)

    def get_log_level_int(self) -> int:
        """Get the numeric logging level."""
        return getattr(logging, self.level)


class ServiceConfig(BaseConfig):
    """Connection settings for the TestFiesta API."""

    api_key: str = Field(..., description="API key used as bearer token", min_length=1)
    organization_handle: str = Field(..., description="Organization handle", min_length=1)
    base_url: str = Field(default=DEFAULT_BASE_URL, description="TestFiesta instance URL")
    request_timeout: float = Field(
        default=30.0,
        description="Per-request timeout in seconds",
        gt=0,
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value):
        """Validate base URL format."""
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return value.rstrip("/")

    @classmethod
    def from_env(cls, **overrides) -> "ServiceConfig":
        """Create a service configuration from environment variables."""
        config = {
            "api_key": cls.get_env_var("API_KEY", ""),
            "organization_handle": cls.get_env_var("ORGANIZATION", ""),
            "base_url": cls.get_env_var("BASE_URL", DEFAULT_BASE_URL),
            "request_timeout": float(cls.get_env_var("REQUEST_TIMEOUT", 30.0)),
        }
        config.update(overrides)
        return cls(**config)


class SubmissionConfig(BaseConfig):
    """Tunables for the submission orchestrator."""

    retry_attempts: int = Field(
        default=3,
        description="Total attempts per remote call, including the first one",
        ge=1,
    )
    retry_delay: float = Field(
        default=1.0,
        description="Delay in seconds before the first retry",
        ge=0,
    )
    backoff_factor: float = Field(
        default=2.0,
        description="Multiplier applied to the delay after each failed attempt",
        ge=1.0,
    )
    jitter: bool = Field(
        default=True,
        description="Whether to add up to 25% random jitter to retry delays",
    )
    timeout: float = Field(
        default=300.0,
        description="Overall submission deadline in seconds; also caps a single retry delay",
        gt=0,
    )
    strict_mode: bool = Field(
        default=False,
        description="Abort the submission on the first failed case",
    )
    batch_size: int | None = Field(
        default=None,
        description="Cases per submit call (None submits every case in one batch)",
        gt=0,
    )
    enable_performance_monitoring: bool = Field(
        default=False,
        description="Record timings for every remote operation",
    )

    @classmethod
    def from_env(cls, **overrides) -> "SubmissionConfig":
        """Create a submission configuration from environment variables."""
        batch_size = cls.get_env_var("BATCH_SIZE", None)
        config = {
            "retry_attempts": int(cls.get_env_var("RETRY_ATTEMPTS", 3)),
            "retry_delay": float(cls.get_env_var("RETRY_DELAY", 1.0)),
            "backoff_factor": float(cls.get_env_var("BACKOFF_FACTOR", 2.0)),
            "jitter": cls.get_env_bool("RETRY_JITTER", True),
            "timeout": float(cls.get_env_var("TIMEOUT", 300.0)),
            "strict_mode": cls.get_env_bool("STRICT_MODE", False),
            "batch_size": int(batch_size) if batch_size else None,
            "enable_performance_monitoring": cls.get_env_bool("PERFORMANCE_MONITORING", False),
        }
        config.update(overrides)
        return cls(**config)


class ParserConfig(BaseConfig):
    """Settings for reading result files."""

    max_workers: int = Field(
        default=4,
        description="Upper bound on files parsed concurrently",
        ge=1,
    )
    default_source: str = Field(
        default="junit-xml",
        description="Provenance tag used when the caller does not supply one",
    )
    encoding: str = Field(default="utf-8", description="Text encoding of result files")

    @classmethod
    def from_env(cls, **overrides) -> "ParserConfig":
        """Create a parser configuration from environment variables."""
        config = {
            "max_workers": int(cls.get_env_var("PARSER_WORKERS", 4)),
            "default_source": cls.get_env_var("DEFAULT_SOURCE", "junit-xml"),
        }
        config.update(overrides)
        return cls(**config)


class FieldMappingRule(BaseModel):
    """How a single source custom field lands on the destination."""

    name: str | None = Field(default=None, description="Destination field name")
    type: str | None = Field(default=None, description="Destination value type")

    SUPPORTED_TYPES: ClassVar[tuple[str, ...]] = (
        "string",
        "number",
        "boolean",
        "date",
        "datetime",
        "list",
    )

    @field_validator("type")
    @classmethod
    def validate_type(cls, value):
        """Validate that the target type is supported."""
        if value is None:
            return value
        value = value.lower()
        if value not in cls.SUPPORTED_TYPES:
            raise ValueError(
                f"Field type '{value}' is not supported. Must be one of: {', '.join(cls.SUPPORTED_TYPES)}"
            )
        return value


class MappingConfig(BaseConfig):
    """Custom-field mapping table."""

    custom_fields: dict[str, FieldMappingRule] = Field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path) -> "MappingConfig":
        """
        Load a mapping table from a JSON file.

        The file holds an object keyed by source field name, each value being
        ``{"name": ..., "type": ...}``.
        """
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
        if "custom_fields" in data:
            data = data["custom_fields"]
        return cls(custom_fields=data)

    @classmethod
    def from_env(cls, **overrides) -> "MappingConfig":
        """Create a mapping configuration, loading the file named by RESULTSYNC_FIELD_MAPPING."""
        mapping_file = cls.get_env_var("FIELD_MAPPING", None)
        if mapping_file and not overrides:
            return cls.from_file(mapping_file)
        return cls(**overrides)


class StateConfig(BaseConfig):
    """Location of the incremental sync-state database."""

    db_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL of the sync-state database (None disables persistence)",
    )

    @classmethod
    def from_env(cls, **overrides) -> "StateConfig":
        """Create a state configuration from environment variables."""
        config = {"db_url": cls.get_env_var("STATE_DB_URL", None)}
        config.update(overrides)
        return cls(**config)


class AppConfig(BaseConfig):
    """Main application configuration that aggregates all other configurations."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    service: ServiceConfig | None = Field(
        default=None,
        description="TestFiesta API configuration",
    )
    submission: SubmissionConfig = Field(default_factory=SubmissionConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    mapping: MappingConfig = Field(default_factory=MappingConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    debug: bool = Field(default=False, description="Debug mode flag")

    NESTED: ClassVar[dict[str, type[BaseConfig]]] = {
        "logging": LoggingConfig,
        "service": ServiceConfig,
        "submission": SubmissionConfig,
        "parser": ParserConfig,
        "mapping": MappingConfig,
        "state": StateConfig,
    }

    @model_validator(mode="after")
    def apply_debug(self):
        """Debug mode forces DEBUG logging."""
        if self.debug:
            self.logging.level = "DEBUG"
        return self

    @classmethod
    def from_env(cls, **overrides) -> "AppConfig":
        """Create an application configuration from environment variables."""
        config = {
            "logging": LoggingConfig.from_env(),
            "submission": SubmissionConfig.from_env(),
            "parser": ParserConfig.from_env(),
            "mapping": MappingConfig.from_env(),
            "state": StateConfig.from_env(),
            "debug": cls.get_env_bool("DEBUG", False),
        }

        if cls.get_env_var("API_KEY"):
            config["service"] = ServiceConfig.from_env()

        for key, value in overrides.items():
            if key in cls.NESTED and isinstance(value, dict):
                config[key] = cls.NESTED[key](**value)
            else:
                config[key] = value

        return cls(**config)
