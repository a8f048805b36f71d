# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Core configuration - centralized config for the parley package.

All environment-based configuration should flow through this module.
This provides a single source of truth and consistent defaults.

Usage:
    from parley.core.config import get_config
    config = get_config()

    # Access settings
    prefix = config.group_name_prefix
    log_level = config.log_level
"""

from __future__ import annotations

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigException

TOPIC_ID_POLICIES = ("unique", "content")


class CoreSettings(BaseSettings):
    """Core configuration settings for Parley.

    Settings can be configured via environment variables with the
    PARLEY_ prefix, or through a local ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="PARLEY_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="PARLEY_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="PARLEY_LOG_FILE",
    )

    # ==========================================================================
    # CACHE SETTINGS
    # ==========================================================================

    cache_max_size: int = Field(
        default=1000,
        description="Maximum number of topics kept in the topic -> group cache",
        validation_alias="PARLEY_CACHE_MAX_SIZE",
    )

    # ==========================================================================
    # CONVERSATION SETTINGS
    # ==========================================================================

    topic_id_policy: str = Field(
        default="unique",
        description="Multi-party topic ids: 'unique' per creation or 'content' derived from participants",
        validation_alias="PARLEY_TOPIC_ID_POLICY",
    )
    group_name_prefix: str = Field(
        default="conversation-",
        description="Prefix of Group names; the remainder is the topic id",
        validation_alias="PARLEY_GROUP_NAME_PREFIX",
    )
    p2p_separator: str = Field(
        default="<->",
        description="Reserved separator between the two participants of a P2P topic id",
        validation_alias="PARLEY_P2P_SEPARATOR",
    )
    auto_add_sync_peers: bool = Field(
        default=False,
        description="Add every connected replication peer to new group topics by default",
        validation_alias="PARLEY_AUTO_ADD_SYNC_PEERS",
    )

    @field_validator("topic_id_policy")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        value = value.lower()
        if value not in TOPIC_ID_POLICIES:
            raise ValueError(f"topic_id_policy must be one of {TOPIC_ID_POLICIES}, got {value!r}")
        return value

    @field_validator("p2p_separator", "group_name_prefix")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.

    Raises:
        ConfigException: If the environment holds invalid settings
    """
    global _config
    if _config is None:
        try:
            _config = CoreSettings()
        except ValidationError as e:
            fields = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
            raise ConfigException(f"Invalid configuration: {e.error_count()} error(s)", {"fields": fields}) from e
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
