"""Configuration loader for cwdeploy deployments.

This module provides the ConfigLoader class for loading, parsing, and
validating deployment configuration from YAML files.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from cwdeploy.config.env_loader import load_dotenv_files, substitute_env_vars
from cwdeploy.lib.errors import ConfigError, FileNotFoundError
from cwdeploy.models.config import DeploymentConfig

logger = logging.getLogger(__name__)

# Environment variables overriding top-level fields
ENV_VAR_MAP = {
    "state_dir": "CWDEPLOY_STATE_DIR",
    "artifacts_dir": "CWDEPLOY_ARTIFACTS_DIR",
}


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into human-readable messages.

    Args:
        exc: Pydantic ValidationError exception

    Returns:
        One message per field error, prefixed with the dotted field path
    """
    errors: list[str] = []

    for error in exc.errors():
        loc = error.get("loc", ())
        field_path = ".".join(str(item) for item in loc) if loc else "unknown"
        msg = error.get("msg", "Unknown error")

        if error.get("type") == "value_error":
            received = error.get("input")
            errors.append(f"Field '{field_path}': {msg} (received: {received!r})")
        else:
            errors.append(f"Field '{field_path}': {msg}")

    return errors if errors else ["Validation failed with unknown error"]


def _read_yaml_with_env_substitution(path: Path) -> dict[str, Any] | None:
    """Read a YAML file, substituting environment variables before parsing.

    Raises:
        OSError: If file cannot be read
        yaml.YAMLError: If YAML parsing fails
        ConfigError: If env var substitution fails
    """
    raw_text = path.read_text(encoding="utf-8")
    content = yaml.safe_load(substitute_env_vars(raw_text))
    return content if content else None


def _apply_env_overrides(
    config: dict[str, Any], env_vars: os._Environ[str] | dict[str, str]
) -> None:
    for field_name, env_var in ENV_VAR_MAP.items():
        value = env_vars.get(env_var)
        if value:
            logger.debug(f"Overriding {field_name} from {env_var}")
            config[field_name] = value


class ConfigLoader:
    """Loads and validates deployment configuration files.

    Relative ``artifacts_dir`` and ``state_dir`` paths are resolved against
    the directory holding the configuration file.
    """

    def parse_yaml(self, file_path: str) -> dict[str, Any]:
        """Parse a YAML file without validation.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigError: If YAML parsing fails
        """
        path = Path(file_path)
        try:
            return _read_yaml_with_env_substitution(path) or {}
        except OSError as e:
            raise FileNotFoundError(
                file_path,
                f"Configuration file not found at {file_path}. "
                f"Please ensure the file exists at this path.",
            ) from e
        except yaml.YAMLError as e:
            raise ConfigError(
                "yaml_parse",
                f"Failed to parse YAML file {file_path}: {str(e)}",
            ) from e

    def load_deployment_yaml(self, file_path: str) -> DeploymentConfig:
        """Load and validate a deployment configuration.

        Configuration precedence (highest to lowest):
        1. ``CWDEPLOY_*`` environment variables
        2. Explicit settings in the YAML file
        3. Model defaults

        A ``.env`` file next to the configuration is loaded first, so its
        variables are available for ``${VAR}`` substitution.

        Args:
            file_path: Path to the deployment YAML file

        Returns:
            Validated DeploymentConfig instance

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigError: If parsing or validation fails
        """
        path = Path(file_path)
        if load_dotenv_files(path.parent):
            logger.debug(f"Loaded environment from {path.parent / '.env'}")

        raw = self.parse_yaml(file_path)
        if not isinstance(raw, dict):
            raise ConfigError(
                "yaml_parse", f"Expected a mapping at the top of {file_path}"
            )
        _apply_env_overrides(raw, os.environ)

        try:
            config = DeploymentConfig(**raw)
        except PydanticValidationError as e:
            error_text = "\n".join(flatten_pydantic_errors(e))
            raise ConfigError(
                "deployment_validation",
                f"Invalid deployment configuration in {file_path}:\n{error_text}",
            ) from e

        base_dir = path.parent
        updates: dict[str, Path] = {}
        for field_name in ("artifacts_dir", "state_dir"):
            value: Path = getattr(config, field_name)
            if not value.is_absolute():
                updates[field_name] = base_dir / value
        return config.model_copy(update=updates)


def load_deployment_config(file_path: str) -> DeploymentConfig:
    """One-call helper used by CLI commands."""
    return ConfigLoader().load_deployment_yaml(file_path)
