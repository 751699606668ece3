"""Deployment progress state models persisted between runs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from cwdeploy.lib.errors import StateConflictError

STATE_VERSION = "1.0"


class KeyKind(str, Enum):
    """Categories of entries recorded in the progress state."""

    MODULE = "module"
    ADDRESS = "address"
    ACTION = "action"


@dataclass(frozen=True)
class StoreKey:
    """Typed reference to one entry of the progress state.

    Rendered as ``<kind>:<name>``, e.g. ``address:oracle`` or
    ``action:oracle:price-source:untrn``.
    """

    kind: KeyKind
    name: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.name}"


def module_key(name: str) -> StoreKey:
    """Key for an uploaded module id."""
    return StoreKey(KeyKind.MODULE, name)


def address_key(name: str) -> StoreKey:
    """Key for an instantiated contract address."""
    return StoreKey(KeyKind.ADDRESS, name)


def action_key(name: str) -> StoreKey:
    """Key for a completed one-shot configuration action."""
    return StoreKey(KeyKind.ACTION, name)


class DeploymentState(BaseModel):
    """Durable record of what a deployment has already done on chain.

    Module ids and contract addresses are write-once. Completed actions are
    opaque completion keys; pending actions name steps whose chain call was
    started but whose outcome was never recorded.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    version: str = Field(default=STATE_VERSION, description="State file version")
    chain_id: str | None = Field(default=None, description="Chain the state targets")
    label: str | None = Field(default=None, description="Deployment label")
    module_ids: dict[str, str] = Field(
        default_factory=dict, description="Uploaded code ids keyed by module name"
    )
    contract_addresses: dict[str, str] = Field(
        default_factory=dict, description="Contract addresses keyed by contract name"
    )
    completed_actions: set[str] = Field(
        default_factory=set, description="Completion keys of configuration actions"
    )
    pending_actions: set[str] = Field(
        default_factory=set, description="Steps with an unrecorded outcome"
    )
    updated_at: datetime | None = Field(default=None, description="Last flush time")

    @field_serializer("completed_actions", "pending_actions")
    def _serialize_sorted(self, value: set[str]) -> list[str]:
        return sorted(value)

    def get_module_id(self, name: str) -> str | None:
        """Return the module id recorded for a module, if any."""
        return self.module_ids.get(name)

    def set_module_id(self, name: str, module_id: str) -> None:
        """Record a module id; refuses to overwrite a different value."""
        _write_once(self.module_ids, module_key(name), name, module_id)

    def get_address(self, name: str) -> str | None:
        """Return the address recorded for a contract, if any."""
        return self.contract_addresses.get(name)

    def set_address(self, name: str, address: str) -> None:
        """Record a contract address; refuses to overwrite a different value."""
        _write_once(self.contract_addresses, address_key(name), name, address)

    def has_action(self, key: str) -> bool:
        """Whether a configuration action has been completed."""
        return key in self.completed_actions

    def mark_action(self, key: str) -> None:
        """Record a configuration action as completed."""
        self.completed_actions.add(key)

    def lookup(self, key: StoreKey) -> str | None:
        """Return the value recorded under a typed key, or None if absent."""
        if key.kind is KeyKind.MODULE:
            return self.get_module_id(key.name)
        if key.kind is KeyKind.ADDRESS:
            return self.get_address(key.name)
        return key.name if self.has_action(key.name) else None

    def has(self, key: StoreKey) -> bool:
        """Whether a typed key is present."""
        return self.lookup(key) is not None


def _write_once(mapping: dict[str, str], key: StoreKey, name: str, value: str) -> None:
    existing = mapping.get(name)
    if existing is not None and existing != value:
        raise StateConflictError(str(key), existing, value)
    mapping[name] = value
