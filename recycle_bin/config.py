"""
Configuration module for the recycle bin engine.

Provides centralized configuration for cascade deletion, restoration,
retention and the audit trail.
"""

import os
from enum import Enum
from typing import Any, Dict, Optional, Union, get_args, get_origin

from pydantic import BaseModel, Field, field_validator


class AuditStorageBackend(str, Enum):
    """Supported storage backends for audit events."""

    SQL = "sql"
    FILE = "file"
    MEMORY = "memory"


class RecycleBinConfig(BaseModel):
    """Central configuration for the recycle bin engine.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (RECYCLE_BIN_ prefix)
        3. Default values (lowest priority)

    Example:
        >>> config = RecycleBinConfig(retention_days=60)
        >>> os.environ["RECYCLE_BIN_RETENTION_DAYS"] = "14"
        >>> config = RecycleBinConfig.from_env()

    Note:
        ``retention_days`` only drives ``purge_expired`` when it is called
        without an explicit age. Nothing is purged implicitly.
    """

    # General settings
    application_name: str = Field(
        "Recycle Bin", description="Name of the application for audit events"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )
    database_url: str = Field(
        "sqlite:///recycle_bin.db", description="SQLAlchemy URL of the protected store"
    )
    log_level: str = Field("INFO", description="Logging level used by the CLI")

    # Deletion settings
    retention_days: int = Field(
        30, description="Days a deletion stays restorable before purge", gt=0
    )
    deletion_key_length: int = Field(
        40, description="Length of generated deletion and snapshot keys", ge=32, le=128
    )
    system_actor: str = Field(
        "system", description="Actor recorded when no user context is set"
    )

    # Audit settings
    audit_enabled: bool = Field(True, description="Emit audit events")
    audit_storage_backend: AuditStorageBackend = Field(
        AuditStorageBackend.SQL, description="Storage backend for audit events"
    )
    audit_file_path: Optional[str] = Field(
        "./audit_logs", description="Path for file-based audit storage"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "test"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is a standard logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "RECYCLE_BIN_") -> "RecycleBinConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            field_type = field_info.annotation

            # Handle Optional types
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            try:
                if field_type == bool:
                    config_dict[field_name] = value.lower() in ("true", "1", "yes", "on")
                elif field_type == int:
                    config_dict[field_name] = int(value)
                elif isinstance(field_type, type) and issubclass(field_type, Enum):
                    config_dict[field_name] = field_type(value.lower())
                else:
                    config_dict[field_name] = value
            except (ValueError, TypeError):
                # Let pydantic report the invalid raw value
                config_dict[field_name] = value

        return cls.model_validate(config_dict)


# Global configuration instance
_config: Optional[RecycleBinConfig] = None


def get_config() -> RecycleBinConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = RecycleBinConfig.from_env()

    return _config


def set_config(config: Optional[RecycleBinConfig]) -> None:
    """
    Set the global configuration instance.

    Passing ``None`` resets it so the next ``get_config`` reloads from the
    environment.
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> RecycleBinConfig:
    """
    Configure the recycle bin with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = RecycleBinConfig(**kwargs)
    else:
        config_dict = _config.model_dump()
        config_dict.update(kwargs)
        _config = RecycleBinConfig(**config_dict)

    return _config
