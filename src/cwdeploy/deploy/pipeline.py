"""Pipeline driver running a deployment plan against a progress store."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from cwdeploy.chain.base import BaseChainAdapter
from cwdeploy.deploy.state import ProgressStore
from cwdeploy.deploy.steps import Step, StepContext, StepOutcome, StepReport
from cwdeploy.lib.errors import (
    ChainUnavailableError,
    DependencyMissingError,
    StepExecutionError,
)
from cwdeploy.lib.logging_config import get_logger
from cwdeploy.models.config import DeploymentConfig
from cwdeploy.models.state import DeploymentState, StoreKey

logger = get_logger(__name__)

StepCallback = Callable[[StepReport], None]


class PipelineStatus(str, Enum):
    """Lifecycle of one pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PipelineResult:
    """Summary of a pipeline run.

    Attributes:
        status: Terminal status of the run
        reports: One report per step that ran, in order
        error: The error that stopped the run, if any
    """

    status: PipelineStatus
    reports: list[StepReport] = field(default_factory=list)
    error: DependencyMissingError | StepExecutionError | None = None

    @property
    def ok(self) -> bool:
        """Whether every step completed."""
        return self.status is PipelineStatus.COMPLETED

    @property
    def executed(self) -> list[str]:
        """Names of the steps that sent a transaction or were reconciled."""
        return [
            r.name
            for r in self.reports
            if r.outcome in (StepOutcome.EXECUTED, StepOutcome.RECONCILED)
        ]

    @property
    def skipped(self) -> list[str]:
        """Names of the steps already recorded before the run."""
        return [r.name for r in self.reports if r.outcome is StepOutcome.SKIPPED]

    @property
    def gas_used(self) -> int:
        """Total gas reported by the executed steps."""
        return sum(r.gas_used or 0 for r in self.reports)

    @property
    def failed_step(self) -> str | None:
        """Name of the step that stopped the run, if any."""
        if self.error is None:
            return None
        return self.error.step_name

    def raise_for_error(self) -> None:
        """Re-raise the error that stopped the run."""
        if self.error is not None:
            raise self.error


class PipelineDriver:
    """Runs steps in authored order, checkpointing progress after each one.

    The store is flushed on every exit path, including interrupts. The first
    failing step stops the run; re-invoking with the same store resumes from
    the first incomplete step.

    Args:
        store: Progress store for the environment key
        chain: Chain adapter used by the steps
        config: Deployment configuration
        on_step: Called with each step report as soon as the step finishes
        max_attempts: Attempts per step when the node was unreachable
        retry_delay: Base delay in seconds between such attempts
    """

    def __init__(
        self,
        store: ProgressStore,
        chain: BaseChainAdapter,
        config: DeploymentConfig,
        on_step: StepCallback | None = None,
        max_attempts: int = 1,
        retry_delay: float = 2.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.chain = chain
        self.config = config
        self.on_step = on_step
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.status = PipelineStatus.PENDING

    def run(self, plan: Sequence[Step]) -> PipelineResult:
        """Run a plan to completion or to its first failure.

        Returns:
            PipelineResult describing what ran

        Raises:
            CorruptStateError: If the persisted state cannot be loaded
        """
        self.status = PipelineStatus.PENDING
        result = PipelineResult(status=self.status)

        with self.store.session(label=self.config.label) as state:
            self.status = PipelineStatus.RUNNING
            ctx = StepContext(
                config=self.config,
                state=state,
                chain=self.chain,
                checkpoint=lambda: self.store.flush(state),
            )
            logger.info(f"Running {len(plan)} steps against {self.store.path}")

            try:
                for step in plan:
                    report = self._run_step(step, ctx)
                    result.reports.append(report)
                    if report.outcome is not StepOutcome.SKIPPED:
                        ctx.checkpoint()
                    if self.on_step is not None:
                        self.on_step(report)
            except (DependencyMissingError, StepExecutionError) as exc:
                self.status = PipelineStatus.FAILED
                result.error = exc
                logger.error(f"Deployment stopped: {exc}")
            except BaseException:
                self.status = PipelineStatus.FAILED
                raise
            else:
                self.status = PipelineStatus.COMPLETED
                logger.info(
                    f"Deployment completed: {len(result.executed)} executed, "
                    f"{len(result.skipped)} skipped"
                )

        result.status = self.status
        return result

    def _run_step(self, step: Step, ctx: StepContext) -> StepReport:
        attempt = 1
        while True:
            try:
                return step.run(ctx)
            except StepExecutionError as exc:
                retryable = isinstance(exc.cause, ChainUnavailableError)
                if not retryable or attempt >= self.max_attempts:
                    raise
                delay = self.retry_delay * attempt
                logger.warning(
                    f"{step.name}: node unreachable (attempt {attempt}/"
                    f"{self.max_attempts}), retrying in {delay:.0f}s"
                )
                time.sleep(delay)
                attempt += 1


def validate_plan(
    plan: Sequence[Step], state: DeploymentState | None = None
) -> list[str]:
    """Statically check a plan's ordering.

    Every required key must be produced by an earlier step or already be
    recorded in ``state``, and step names must be unique.

    Returns:
        Problems found, empty when the plan is consistent
    """
    problems: list[str] = []
    seen_names: set[str] = set()
    available: set[StoreKey] = set()

    for step in plan:
        if step.name in seen_names:
            problems.append(f"Duplicate step name '{step.name}'")
        seen_names.add(step.name)

        for key in step.requires:
            if key in available or (state is not None and state.has(key)):
                continue
            problems.append(
                f"Step '{step.name}' requires '{key}' which no earlier step produces"
            )
        available.update(step.produces)

    return problems
