"""Shared utilities and error handling for cwdeploy."""

from cwdeploy.lib.errors import (
    ConfigError,
    CwDeployError,
    DeploymentError,
)
from cwdeploy.lib.errors import (
    FileNotFoundError as CwDeployFileNotFoundError,
)

__all__ = [
    "CwDeployError",
    "ConfigError",
    "DeploymentError",
    "CwDeployFileNotFoundError",
]
