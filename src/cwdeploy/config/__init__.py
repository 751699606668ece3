"""Configuration loading for cwdeploy deployments.

Main components:
- ConfigLoader: Load and validate deployment YAML files
- load_deployment_config: One-call helper for CLI commands
- Environment variable substitution (${VAR} and ${VAR:-default})
"""

from cwdeploy.config.env_loader import substitute_env_vars
from cwdeploy.config.loader import ConfigLoader, load_deployment_config

__all__ = [
    "ConfigLoader",
    "load_deployment_config",
    "substitute_env_vars",
]
