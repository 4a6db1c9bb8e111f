"""
Settings Management

Pydantic-based settings schema with environment variable support.
Merges the TOML config file with environment variables and provides
type-safe access.

@.architecture
Incoming: utils/config.py, Environment variables, config/devtools.toml, main.py --- {Dict from load_toml_config, str from os.getenv, CLI overrides}
Processing: get_settings(), reload_settings(), Settings.with_overrides(), field_validator() --- {4 jobs: configuration_loading, environment_variable_merging, schema_validation, caching}
Outgoing: app.py, main.py, core/proxy.py --- {Settings Pydantic model with typed config sections}
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from utils.config import load_config as load_toml_config


# =============================================================================
# Settings Schemas
# =============================================================================

class RelaySettings(BaseModel):
    """Listening sockets for DevTools clients."""
    ws_port: int = 8081
    tcp_port: int = 8082
    internet: bool = False

    @property
    def bind_host(self) -> str:
        """Loopback only unless listening on all interfaces was requested."""
        return "0.0.0.0" if self.internet else "127.0.0.1"


class DeploySettings(BaseModel):
    """Program watch and redeploy."""
    program: Optional[Path] = None
    debounce_seconds: float = 0.5
    poll_interval: float = 0.25

    @field_validator('debounce_seconds', 'poll_interval')
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class ProxySettings(BaseModel):
    """DevTools proxy page source and rewrite targets."""
    localhost: bool = False
    local_base: str = "http://localhost:8000"
    remote_base: str = "https://microsoft.github.io/jacdac-docs"
    dashboard_path: str = "tools/devicescript-devtools"
    title: str = "DeviceScript DevTools"
    favicon_url: str = "https://microsoft.github.io/devicescript/img/favicon.svg"

    @property
    def source_url(self) -> str:
        if self.localhost:
            return f"{self.local_base}/devtools/proxy.html"
        return f"{self.remote_base}/devtools/proxy"

    @property
    def dashboard_url(self) -> str:
        base = self.local_base if self.localhost else self.remote_base
        return f"{base}/{self.dashboard_path}/"


class MonitoringSettings(BaseModel):
    """Monitoring and logging configuration."""
    log_level: str = "INFO"
    log_format: str = "text"  # json|text
    metrics_enabled: bool = True


class Settings(BaseModel):
    """
    Main application settings.

    Loads configuration from:
    1. TOML config file (config/devtools.toml)
    2. Environment variables
    3. Defaults defined in schemas

    Priority: Environment variables > TOML config > Defaults
    """

    app_name: str = "DevTools Bridge"
    app_version: str = "1.0.0"
    environment: str = "development"  # development|production|test
    trace_path: Optional[Path] = None

    relay: RelaySettings = Field(default_factory=RelaySettings)
    deploy: DeploySettings = Field(default_factory=DeploySettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ['development', 'production', 'test']
        if v not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v

    def with_overrides(self, **sections: Any) -> "Settings":
        """
        Return a copy with values replaced.

        Section values are dicts merged into the existing section; None values
        are ignored.

        Example:
            settings.with_overrides(relay={"internet": True}, trace_path="frames.log")
        """
        data = self.model_dump()
        _merge(data, sections)
        return Settings(**data)


# Environment variable -> (section, field); section None means top level
ENV_OVERRIDES: Dict[str, Tuple[Optional[str], str]] = {
    "DEVTOOLS_ENVIRONMENT": (None, "environment"),
    "DEVTOOLS_TRACE": (None, "trace_path"),
    "RELAY_WS_PORT": ("relay", "ws_port"),
    "RELAY_TCP_PORT": ("relay", "tcp_port"),
    "RELAY_INTERNET": ("relay", "internet"),
    "DEPLOY_PROGRAM": ("deploy", "program"),
    "DEPLOY_DEBOUNCE_SECONDS": ("deploy", "debounce_seconds"),
    "DEPLOY_POLL_INTERVAL": ("deploy", "poll_interval"),
    "PROXY_LOCALHOST": ("proxy", "localhost"),
    "MONITORING_LOG_LEVEL": ("monitoring", "log_level"),
    "MONITORING_LOG_FORMAT": ("monitoring", "log_format"),
    "MONITORING_METRICS_ENABLED": ("monitoring", "metrics_enabled"),
}


def _merge(target: Dict[str, Any], updates: Dict[str, Any]) -> None:
    for key, value in updates.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


# =============================================================================
# Settings Loader
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Load and return application settings (cached).

    Returns:
        Settings: Complete application settings
    """
    settings_dict: Dict[str, Any] = {}

    toml_config = load_toml_config()
    for section in ("relay", "deploy", "proxy", "monitoring"):
        if isinstance(toml_config.get(section), dict):
            settings_dict[section] = dict(toml_config[section])

    for env_name, (section, field) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        if section is None:
            settings_dict[field] = value
        else:
            settings_dict.setdefault(section, {})[field] = value

    return Settings(**settings_dict)


def reload_settings() -> Settings:
    """
    Reload settings (clears cache).

    Returns:
        Settings: Reloaded application settings
    """
    get_settings.cache_clear()
    return get_settings()

