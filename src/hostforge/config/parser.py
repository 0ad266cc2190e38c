"""YAML configuration parser for hostforge."""

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from .models import HostConfig

DEFAULT_CONFIG_PATHS = ("hostforge.yaml", "/etc/hostforge/hostforge.yaml")
CONFIG_ENV_VAR = "HOSTFORGE_CONFIG"


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Configuration manager for hostforge."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to hostforge.yaml. When None, HOSTFORGE_CONFIG
                and then the default locations are tried; defaults apply if
                no file exists.
        """
        self.config_path = Path(config_path) if config_path else self._discover()
        self.data: Dict = {}
        self.host_config: Optional[HostConfig] = None

    @staticmethod
    def _discover() -> Optional[Path]:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return Path(env_path)
        for candidate in DEFAULT_CONFIG_PATHS:
            path = Path(candidate)
            if path.exists():
                return path
        return None

    def load(self) -> HostConfig:
        """Load and validate configuration.

        Returns:
            Immutable HostConfig

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If an explicit configuration file doesn't exist
        """
        if self.config_path is None:
            self.data = {}
        else:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            try:
                with open(self.config_path, "r") as f:
                    self.data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigValidationError(f"Failed to parse YAML: {e}")

            if not isinstance(self.data, dict):
                raise ConfigValidationError(
                    "Configuration must be a mapping",
                    [{"loc": ["<root>"], "msg": f"expected mapping, got {type(self.data).__name__}"}],
                )

        errors = self.validate()
        if errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)",
                errors,
            )

        self.host_config = HostConfig(**self.data)
        return self.host_config

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        try:
            HostConfig(**self.data)
        except ValidationError as e:
            for error in e.errors():
                errors.append({"loc": list(error["loc"]), "msg": error["msg"]})
        return errors
