"""Idempotency-checked deployment steps.

Every step declares the store keys it requires and the keys it produces, and
performs at most one chain interaction per run:

1. a missing required key raises ``DependencyMissingError`` before any chain call;
2. if every produced key is already recorded the step is skipped;
3. otherwise the chain call is made, its response validated and the produced
   keys written to the state.

Adapter failures are wrapped in ``StepExecutionError``. Steps never retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from cwdeploy.chain.base import BaseChainAdapter
from cwdeploy.lib.errors import (
    ChainError,
    CwDeployError,
    DependencyMissingError,
    StepExecutionError,
    UnexpectedResponseError,
)
from cwdeploy.lib.logging_config import get_logger
from cwdeploy.models.config import Coin, DeploymentConfig
from cwdeploy.models.state import (
    DeploymentState,
    StoreKey,
    action_key,
    address_key,
    module_key,
)

logger = get_logger(__name__)

MessageBuilder = Callable[["StepContext"], dict[str, Any]]
Confirmation = Callable[["StepContext"], bool]


class StepOutcome(str, Enum):
    """How a step finished."""

    EXECUTED = "executed"
    SKIPPED = "skipped"
    RECONCILED = "reconciled"


@dataclass
class StepReport:
    """Outcome of one step run, used for progress output."""

    name: str
    outcome: StepOutcome
    tx_hash: str | None = None
    gas_used: int | None = None
    detail: str | None = None


@dataclass
class StepContext:
    """Everything a step may read or mutate while it runs.

    Attributes:
        config: Deployment configuration (read only)
        state: Progress state, mutated in place
        chain: Chain adapter
        checkpoint: Persists the state; called before a chain call starts
    """

    config: DeploymentConfig
    state: DeploymentState
    chain: BaseChainAdapter
    checkpoint: Callable[[], None] = field(default=lambda: None)
    current_step: str = ""

    def address(self, name: str) -> str:
        """Return a recorded contract address or fail with DependencyMissingError."""
        address = self.state.get_address(name)
        if address is None:
            raise DependencyMissingError(self.current_step, str(address_key(name)))
        return address


class Step(ABC):
    """A named unit of deployment work with declared pre/postconditions."""

    def __init__(
        self,
        name: str,
        requires: Iterable[StoreKey] = (),
        produces: Iterable[StoreKey] = (),
    ) -> None:
        self.name = name
        self.requires: tuple[StoreKey, ...] = tuple(requires)
        self.produces: tuple[StoreKey, ...] = tuple(produces)
        if not self.produces:
            raise ValueError(f"Step '{name}' must produce at least one store key")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def missing_requirement(self, state: DeploymentState) -> StoreKey | None:
        """Return the first required key absent from the state."""
        for key in self.requires:
            if not state.has(key):
                return key
        return None

    def is_done(self, state: DeploymentState) -> bool:
        """Whether every produced key is already recorded."""
        return all(state.has(key) for key in self.produces)

    def reconcile(self, ctx: StepContext) -> bool:
        """Check whether an earlier attempt with unknown outcome actually landed.

        Returns True when the postconditions could be recorded from chain
        state without re-sending. The default cannot tell.
        """
        return False

    @abstractmethod
    def perform(self, ctx: StepContext) -> StepReport:
        """Make the single chain interaction and record the postconditions."""

    def run(self, ctx: StepContext) -> StepReport:
        """Run the step with precondition, skip and failure handling."""
        ctx.current_step = self.name
        state = ctx.state

        missing = self.missing_requirement(state)
        if missing is not None:
            raise DependencyMissingError(self.name, str(missing))

        if self.is_done(state):
            state.pending_actions.discard(self.name)
            logger.debug(f"Skipping {self.name}: already recorded")
            return StepReport(self.name, StepOutcome.SKIPPED)

        if self.name in state.pending_actions:
            try:
                landed = self.reconcile(ctx)
            except ChainError as exc:
                raise StepExecutionError(self.name, exc) from exc
            if landed:
                state.pending_actions.discard(self.name)
                logger.info(f"{self.name}: previous attempt found on chain")
                return StepReport(
                    self.name,
                    StepOutcome.RECONCILED,
                    detail="confirmed from chain state",
                )
            logger.warning(
                f"{self.name}: previous attempt has an unknown outcome, re-sending"
            )

        state.pending_actions.add(self.name)
        ctx.checkpoint()

        try:
            report = self.perform(ctx)
        except (DependencyMissingError, StepExecutionError):
            state.pending_actions.discard(self.name)
            raise
        except (CwDeployError, OSError) as exc:
            error = StepExecutionError(self.name, exc)
            if not error.ambiguous:
                state.pending_actions.discard(self.name)
            raise error from exc

        state.pending_actions.discard(self.name)
        return report


class UploadStep(Step):
    """Upload a wasm artifact and record its module id."""

    def __init__(self, module: str, artifact: Path) -> None:
        super().__init__(f"upload:{module}", produces=[module_key(module)])
        self.module = module
        self.artifact = Path(artifact)

    def perform(self, ctx: StepContext) -> StepReport:
        wasm = self.artifact.read_bytes()
        module_id = ctx.chain.upload(wasm)
        if not module_id or not str(module_id).strip():
            raise UnexpectedResponseError(
                f"Upload of {self.artifact.name} returned no id"
            )

        ctx.state.set_module_id(self.module, str(module_id))
        return StepReport(
            self.name, StepOutcome.EXECUTED, detail=f"code id {module_id}"
        )


class InstantiateStep(Step):
    """Instantiate a contract from an uploaded module and record its address.

    Args:
        contract: Logical contract name
        module: Module the contract is built from
        build_msg: Builds the instantiate message from the context
        references: Contracts whose addresses the instantiate message embeds
        label: On-chain label, defaults to ``<deployment label>-<contract>``
    """

    def __init__(
        self,
        contract: str,
        module: str,
        build_msg: MessageBuilder,
        references: Iterable[str] = (),
        label: str | None = None,
    ) -> None:
        references = tuple(references)
        super().__init__(
            f"instantiate:{contract}",
            requires=[module_key(module), *(address_key(r) for r in references)],
            produces=[address_key(contract)],
        )
        self.contract = contract
        self.module = module
        self.build_msg = build_msg
        self.references = references
        self.label = label

    def perform(self, ctx: StepContext) -> StepReport:
        module_id = ctx.state.get_module_id(self.module)
        if module_id is None:
            raise DependencyMissingError(self.name, str(module_key(self.module)))

        init_msg = self.build_msg(ctx)
        label = self.label or f"{ctx.config.label}-{self.contract.replace('_', '-')}"
        address = ctx.chain.instantiate(
            module_id, init_msg, label, admin=ctx.chain.sender
        )

        prefix = ctx.config.chain.prefix
        if not address or not str(address).startswith(prefix):
            raise UnexpectedResponseError(
                f"Instantiate of {self.contract} returned invalid address {address!r}"
            )

        ctx.state.set_address(self.contract, str(address))
        return StepReport(self.name, StepOutcome.EXECUTED, detail=str(address))


class ExecuteStep(Step):
    """Execute one configuration message and record its completion key.

    Args:
        action: Completion key recorded on success, also the step name
        contract: Contract the message is sent to
        build_msg: Builds the execute message from the context
        references: Other contracts whose addresses the message embeds
        funds: Coins attached to the message
        confirm: Query deciding whether an attempt with unknown outcome landed
    """

    def __init__(
        self,
        action: str,
        contract: str,
        build_msg: MessageBuilder,
        references: Iterable[str] = (),
        funds: list[Coin] | None = None,
        confirm: Confirmation | None = None,
    ) -> None:
        references = tuple(references)
        super().__init__(
            action,
            requires=[address_key(contract), *(address_key(r) for r in references)],
            produces=[action_key(action)],
        )
        self.action = action
        self.contract = contract
        self.build_msg = build_msg
        self.references = references
        self.funds = funds
        self.confirm = confirm

    def reconcile(self, ctx: StepContext) -> bool:
        if self.confirm is None or not self.confirm(ctx):
            return False
        ctx.state.mark_action(self.action)
        return True

    def perform(self, ctx: StepContext) -> StepReport:
        msg = self.build_msg(ctx)
        result = ctx.chain.execute(ctx.address(self.contract), msg, funds=self.funds)
        if not result.tx_hash:
            raise UnexpectedResponseError(
                f"Execute of {self.action} returned no tx hash"
            )

        ctx.state.mark_action(self.action)
        return StepReport(
            self.name,
            StepOutcome.EXECUTED,
            tx_hash=result.tx_hash,
            gas_used=result.gas_used,
        )
