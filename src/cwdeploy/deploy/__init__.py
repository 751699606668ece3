"""cwdeploy deployment engine.

This package provides the resumable deployment pipeline: the persisted
progress store, the step kinds, the concrete protocol plan, the driver
running it and the validation flows.
"""

from cwdeploy.deploy.catalogue import build_plan, check_deployer_balance
from cwdeploy.deploy.pipeline import (
    PipelineDriver,
    PipelineResult,
    PipelineStatus,
    validate_plan,
)
from cwdeploy.deploy.state import ProgressStore, state_key

__all__ = [
    "PipelineDriver",
    "PipelineResult",
    "PipelineStatus",
    "ProgressStore",
    "build_plan",
    "check_deployer_balance",
    "state_key",
    "validate_plan",
]
