"""Base interface for chain adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from cwdeploy.models.chain import ExecuteResult
from cwdeploy.models.config import Coin


class BaseChainAdapter(ABC):
    """Abstract base class for chain adapters.

    Every call blocks until the chain has confirmed the transaction (or
    answered the query) and raises a ``ChainError`` subclass on failure.
    """

    @property
    @abstractmethod
    def sender(self) -> str:
        """Address that signs transactions sent through this adapter."""

    @abstractmethod
    def upload(self, wasm: bytes) -> str:
        """Store wasm byte code on chain.

        Args:
            wasm: Compiled contract byte code.

        Returns:
            Opaque module id (the chain's code id).

        Raises:
            ChainError: If the upload fails.
        """

    @abstractmethod
    def instantiate(
        self,
        module_id: str,
        init_msg: dict[str, Any],
        label: str,
        *,
        admin: str | None = None,
    ) -> str:
        """Instantiate a contract from an uploaded module.

        Args:
            module_id: Module id returned by ``upload``.
            init_msg: Contract instantiate message.
            label: Human-readable contract label.
            admin: Optional migration admin.

        Returns:
            Address of the new contract.

        Raises:
            ChainError: If instantiation fails.
        """

    @abstractmethod
    def execute(
        self,
        address: str,
        msg: dict[str, Any],
        *,
        funds: list[Coin] | None = None,
    ) -> ExecuteResult:
        """Execute a message on a contract.

        Args:
            address: Contract address.
            msg: Execute message.
            funds: Coins sent along with the message.

        Returns:
            ExecuteResult with tx hash, gas used and events.

        Raises:
            ChainError: If execution fails.
        """

    @abstractmethod
    def query_smart(self, address: str, msg: dict[str, Any]) -> Any:
        """Run a smart query against a contract and return the decoded JSON.

        Raises:
            ChainError: If the query fails.
        """

    @abstractmethod
    def query_balance(self, address: str, denom: str) -> int:
        """Return the bank balance of an address for one denom.

        Raises:
            ChainError: If the query fails.
        """
