"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation,
with an optional config.yaml providing defaults.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get("TELERELAY_CONFIG_FILE")

    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/telerelay
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class RelaySettings(BaseSettings):
    """Canonical destination and relay endpoint configuration."""

    destination_uri: str = Field(
        default="https://dc.services.visualstudio.com/v2/track",
        description="Absolute URI of the canonical telemetry collector",
    )
    path: str = Field(default="/v2/track", description="Path the relay listens on")
    timeout_seconds: float = Field(default=30.0, description="Destination request timeout")
    max_body_bytes: int = Field(default=16777216, description="Maximum accepted body size (16MB)")
    await_sinks: bool = Field(
        default=False,
        description="Wait for sink fan-out before responding to the caller",
    )
    sink_factories: List[str] = Field(
        default_factory=list,
        description="Dotted 'module:callable' paths returning additional sinks",
    )

    @field_validator("path")
    def validate_path(cls, v: str) -> str:
        """Relay path must be absolute."""
        if not v.startswith("/"):
            raise ValueError("path must start with '/'")
        return v

    model_config = SettingsConfigDict(env_prefix="TELERELAY_RELAY_")


class BulkIndexSettings(BaseSettings):
    """Bulk-index sink configuration."""

    enabled: bool = Field(default=False, description="Register the bulk-index sink")
    bulk_endpoint: Optional[str] = Field(default=None, description="Absolute URI of the _bulk API")
    index: str = Field(default="telemetry", description="Target index name")
    doc_type: str = Field(default="telemetry", description="Target document type")
    id_field: Optional[str] = Field(default=None, description="Record field used as document id")
    selector: Optional[str] = Field(
        default=None,
        description="Dotted 'module:callable' index selector overriding index/doc_type",
    )
    timeout_seconds: float = Field(default=30.0, description="Bulk request timeout")

    model_config = SettingsConfigDict(env_prefix="TELERELAY_BULK_")


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    relay: RelaySettings = Field(default_factory=RelaySettings)
    bulk_index: BulkIndexSettings = Field(default_factory=BulkIndexSettings)

    model_config = SettingsConfigDict(env_prefix="TELERELAY_", case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    # Load config file data
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "TELERELAY_HOST",
        ("server", "port"): "TELERELAY_PORT",
        ("server", "debug"): "TELERELAY_DEBUG",
        ("server", "log_level"): "TELERELAY_LOG_LEVEL",
        ("relay", "destination_uri"): "TELERELAY_RELAY_DESTINATION_URI",
        ("relay", "path"): "TELERELAY_RELAY_PATH",
        ("relay", "timeout_seconds"): "TELERELAY_RELAY_TIMEOUT_SECONDS",
        ("relay", "max_body_bytes"): "TELERELAY_RELAY_MAX_BODY_BYTES",
        ("relay", "await_sinks"): "TELERELAY_RELAY_AWAIT_SINKS",
        ("bulk_index", "enabled"): "TELERELAY_BULK_ENABLED",
        ("bulk_index", "bulk_endpoint"): "TELERELAY_BULK_BULK_ENDPOINT",
        ("bulk_index", "index"): "TELERELAY_BULK_INDEX",
        ("bulk_index", "doc_type"): "TELERELAY_BULK_DOC_TYPE",
        ("bulk_index", "id_field"): "TELERELAY_BULK_ID_FIELD",
        ("bulk_index", "selector"): "TELERELAY_BULK_SELECTOR",
        ("bulk_index", "timeout_seconds"): "TELERELAY_BULK_TIMEOUT_SECONDS",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value).lower() if isinstance(value, bool) else str(value)

    # Lists are passed as JSON strings
    if "TELERELAY_RELAY_SINK_FACTORIES" not in os.environ:
        factories = (config_data.get("relay") or {}).get("sink_factories")
        if factories:
            os.environ["TELERELAY_RELAY_SINK_FACTORIES"] = json.dumps(factories)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
