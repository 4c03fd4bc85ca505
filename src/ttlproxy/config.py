"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation.
An optional YAML file provides defaults; environment variables override it.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

import yaml
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


CONFIG_FILE_ENV_VAR = "TTLPROXY_CONFIG_FILE"


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get(CONFIG_FILE_ENV_VAR)

    if config_path is None:
        possible_paths = [
            "config.yaml",
            "ttlproxy.yaml",
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class SecuritySettings(BaseSettings):
    """Write-path authorization configuration."""

    access_token: str = Field(
        default="",
        validation_alias=AliasChoices("TTLPROXY_SECURITY_ACCESS_TOKEN", "ACCESS_TOKEN", "access_token"),
        description="Shared secret expected in 'Authorization: Bearer <token>'",
    )

    class Config:
        env_prefix = "TTLPROXY_SECURITY_"


class ProxySettings(BaseSettings):
    """Registration, expiry and forwarding policy."""

    # TTL bounds (seconds)
    min_ttl: int = Field(default=60, description="Minimum registration TTL")
    max_ttl: int = Field(default=3600, description="Maximum registration TTL")

    # Expiry sweep
    sweep_interval_seconds: Optional[float] = Field(
        default=None,
        description="Sweep interval; defaults to min_ttl when unset",
    )
    lock_timeout_seconds: float = Field(default=5.0, description="Store lock acquisition timeout")

    # Forwarding
    max_redirects: int = Field(default=10, description="Maximum redirect hops followed upstream")
    ignored_headers: List[str] = Field(
        default=["content-length", "content-encoding"],
        description="Upstream response headers never copied to the caller",
    )
    upstream_timeout_seconds: float = Field(default=30.0, description="Upstream request timeout")
    stream_chunk_bytes: int = Field(default=65536, description="Chunk size for body passthrough")

    # Registration request limits
    max_body_bytes: int = Field(default=4096, description="Maximum registration body size")

    @field_validator("ignored_headers")
    def normalize_ignored_headers(cls, v: List[str]) -> List[str]:
        return [header.lower() for header in v]

    @model_validator(mode="after")
    def validate_bounds(self) -> "ProxySettings":
        if self.min_ttl < 0:
            raise ValueError("min_ttl must not be negative")
        if self.min_ttl > self.max_ttl:
            raise ValueError("min_ttl must not exceed max_ttl")
        if self.sweep_interval_seconds is not None and self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        if self.max_redirects < 0:
            raise ValueError("max_redirects must not be negative")
        if self.stream_chunk_bytes <= 0:
            raise ValueError("stream_chunk_bytes must be positive")
        return self

    @property
    def sweep_interval(self) -> float:
        """Effective sweep interval in seconds."""
        if self.sweep_interval_seconds is not None:
            return self.sweep_interval_seconds
        return float(max(self.min_ttl, 1))

    class Config:
        env_prefix = "TTLPROXY_PROXY_"


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=False, description="Render logs as JSON lines")

    # Component settings
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)

    class Config:
        env_prefix = "TTLPROXY_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "TTLPROXY_HOST",
        ("server", "port"): "TTLPROXY_PORT",
        ("server", "debug"): "TTLPROXY_DEBUG",
        ("server", "log_level"): "TTLPROXY_LOG_LEVEL",
        ("server", "log_json"): "TTLPROXY_LOG_JSON",
        ("security", "access_token"): "TTLPROXY_SECURITY_ACCESS_TOKEN",
        ("proxy", "min_ttl"): "TTLPROXY_PROXY_MIN_TTL",
        ("proxy", "max_ttl"): "TTLPROXY_PROXY_MAX_TTL",
        ("proxy", "sweep_interval_seconds"): "TTLPROXY_PROXY_SWEEP_INTERVAL_SECONDS",
        ("proxy", "lock_timeout_seconds"): "TTLPROXY_PROXY_LOCK_TIMEOUT_SECONDS",
        ("proxy", "max_redirects"): "TTLPROXY_PROXY_MAX_REDIRECTS",
        ("proxy", "upstream_timeout_seconds"): "TTLPROXY_PROXY_UPSTREAM_TIMEOUT_SECONDS",
        ("proxy", "stream_chunk_bytes"): "TTLPROXY_PROXY_STREAM_CHUNK_BYTES",
        ("proxy", "max_body_bytes"): "TTLPROXY_PROXY_MAX_BODY_BYTES",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)

    # Lists go through the environment as JSON
    if "TTLPROXY_PROXY_IGNORED_HEADERS" not in os.environ:
        ignored_headers = (config_data.get("proxy") or {}).get("ignored_headers")
        if ignored_headers is not None:
            os.environ["TTLPROXY_PROXY_IGNORED_HEADERS"] = json.dumps(ignored_headers)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
