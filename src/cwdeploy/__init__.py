"""cwdeploy - resumable deployments of multi-contract CosmWasm protocols.

cwdeploy uploads, instantiates and wires the contracts of a lending protocol
from a single YAML configuration, recording every on-chain step so that a
failed or interrupted deployment resumes where it stopped.

Main features:
- Deployment configuration in YAML with environment variable substitution
- Write-once progress state with atomic flushes
- Query-before-resend reconciliation for transactions with unknown outcome
- End-to-end validation flows for the red bank and credit accounts
"""

from cwdeploy.config.loader import ConfigLoader
from cwdeploy.lib.errors import ConfigError, CwDeployError, DeploymentError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigLoader",
    "ConfigError",
    "CwDeployError",
    "DeploymentError",
]
