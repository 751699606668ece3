"""Chain adapters used by the deployment pipeline."""

from __future__ import annotations

from cwdeploy.chain.base import BaseChainAdapter
from cwdeploy.lib.errors import ConfigError
from cwdeploy.models.config import DeploymentConfig


def create_adapter(config: DeploymentConfig) -> BaseChainAdapter:
    """Create the chain adapter for a deployment configuration."""
    if not config.chain.binary:
        raise ConfigError(
            field="chain.binary",
            message="A chain CLI binary is required to sign transactions.",
        )

    from cwdeploy.chain.cli import WasmCliAdapter

    return WasmCliAdapter(config.chain, sender=config.deployer_address)


__all__ = ["BaseChainAdapter", "create_adapter"]
