"""Configuration module for hostforge."""

from .models import (
    HostConfig,
    HostSettings,
    DatabaseSettings,
    WebServerSettings,
    SupervisorSettings,
    DeploySettings,
    SiteConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "Config",
    "ConfigValidationError",
    "HostConfig",
    "HostSettings",
    "DatabaseSettings",
    "WebServerSettings",
    "SupervisorSettings",
    "DeploySettings",
    "SiteConfig",
]
