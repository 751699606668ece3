"""Chain adapter driving a wasmd-compatible node CLI.

Transactions are signed and broadcast by the chain's own binary (for example
``neutrond`` or ``osmosisd``) using a key from its keyring. Each transaction
is broadcast in sync mode and then polled with ``query tx`` until it is
included in a block, so every call returns only after confirmation.
"""

from __future__ import annotations

import json
import subprocess  # nosec B404
import tempfile
import time
from pathlib import Path
from typing import Any

from cwdeploy.chain.base import BaseChainAdapter
from cwdeploy.lib.errors import (
    ChainRejectedError,
    ChainTimeoutError,
    ChainUnavailableError,
    UnexpectedResponseError,
)
from cwdeploy.lib.logging_config import get_logger
from cwdeploy.models.chain import ExecuteResult
from cwdeploy.models.config import ChainConfig, Coin

logger = get_logger(__name__)

# stderr fragments that mean the request never reached the node
_UNREACHABLE_MARKERS = (
    "connection refused",
    "no such host",
    "dial tcp",
)

# stderr fragments that mean the request was sent but no answer came back
_NO_RESPONSE_MARKERS = (
    "post failed",
    "timeout awaiting response headers",
    "context deadline exceeded",
)

_TX_NOT_FOUND_MARKERS = ("not found",)

DEFAULT_COMMAND_TIMEOUT = 120


class WasmCliAdapter(BaseChainAdapter):
    """Chain adapter backed by a wasmd-compatible CLI binary.

    Args:
        chain: Chain connection settings
        sender: Address of ``chain.key_name`` in the keyring
        poll_interval: Seconds between ``query tx`` polls
    """

    def __init__(
        self, chain: ChainConfig, sender: str, poll_interval: float = 1.0
    ) -> None:
        self._chain = chain
        self._sender = sender
        self._poll_interval = poll_interval

    @property
    def sender(self) -> str:
        """Address signing the transactions."""
        return self._sender

    def upload(self, wasm: bytes) -> str:
        """Store byte code and return the new code id."""
        with tempfile.TemporaryDirectory(prefix="cwdeploy-") as tmp_dir:
            wasm_path = Path(tmp_dir) / "contract.wasm"
            wasm_path.write_bytes(wasm)
            result = self._broadcast(
                "upload", ["tx", "wasm", "store", str(wasm_path)]
            )

        code_id = result.find_attribute("store_code", "code_id")
        if not code_id:
            raise UnexpectedResponseError(
                f"store_code event without code_id in tx {result.tx_hash}"
            )
        logger.debug(f"Stored code id {code_id}, gas used {result.gas_used}")
        return code_id

    def instantiate(
        self,
        module_id: str,
        init_msg: dict[str, Any],
        label: str,
        *,
        admin: str | None = None,
    ) -> str:
        """Instantiate a contract and return its address."""
        args = [
            "tx",
            "wasm",
            "instantiate",
            module_id,
            json.dumps(init_msg),
            "--label",
            label,
        ]
        args += ["--admin", admin] if admin else ["--no-admin"]
        result = self._broadcast("instantiate", args)

        address = result.find_attribute("instantiate", "_contract_address")
        if not address:
            raise UnexpectedResponseError(
                f"instantiate event without contract address in tx {result.tx_hash}"
            )
        return address

    def execute(
        self,
        address: str,
        msg: dict[str, Any],
        *,
        funds: list[Coin] | None = None,
    ) -> ExecuteResult:
        """Execute a contract message."""
        args = ["tx", "wasm", "execute", address, json.dumps(msg)]
        if funds:
            args += ["--amount", ",".join(f"{c.amount}{c.denom}" for c in funds)]
        return self._broadcast("execute", args)

    def query_smart(self, address: str, msg: dict[str, Any]) -> Any:
        """Run a smart contract query."""
        payload = self._query(
            "query_smart",
            ["query", "wasm", "contract-state", "smart", address, json.dumps(msg)],
        )
        if "data" not in payload:
            raise UnexpectedResponseError(
                f"Smart query response without data: {payload}"
            )
        return payload["data"]

    def query_balance(self, address: str, denom: str) -> int:
        """Return an address' balance of one denom."""
        payload = self._query(
            "query_balance", ["query", "bank", "balances", address]
        )
        for coin in payload.get("balances") or []:
            if coin.get("denom") == denom:
                return int(coin.get("amount", 0))
        return 0

    def _tx_flags(self) -> list[str]:
        chain = self._chain
        return [
            "--from",
            chain.key_name,
            "--keyring-backend",
            chain.keyring_backend,
            "--chain-id",
            chain.id,
            "--node",
            chain.rpc_endpoint,
            "--gas",
            "auto",
            "--gas-adjustment",
            str(chain.gas_adjustment),
            "--gas-prices",
            f"{chain.gas_price}{chain.base_denom}",
            "--broadcast-mode",
            "sync",
            "--output",
            "json",
            "--yes",
        ]

    def _run(
        self, operation: str, args: list[str], timeout: int
    ) -> subprocess.CompletedProcess[str]:
        command = [self._chain.binary, *args]
        logger.debug(f"Running {' '.join(command[:4])} ...")
        try:
            return subprocess.run(  # noqa: S603  # nosec B603
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except OSError as exc:
            raise ChainUnavailableError(
                operation, f"Cannot run '{self._chain.binary}': {exc}"
            ) from exc

    def _query(self, operation: str, args: list[str]) -> dict[str, Any]:
        try:
            completed = self._run(
                operation,
                [*args, "--node", self._chain.rpc_endpoint, "--output", "json"],
                DEFAULT_COMMAND_TIMEOUT,
            )
        except subprocess.TimeoutExpired as exc:
            raise ChainUnavailableError(operation, "Query timed out") from exc

        if completed.returncode != 0:
            raise self._classify_failure(operation, completed.stderr, sent=False)
        return _parse_json(operation, completed.stdout)

    def _broadcast(self, operation: str, args: list[str]) -> ExecuteResult:
        try:
            completed = self._run(
                operation, [*args, *self._tx_flags()], DEFAULT_COMMAND_TIMEOUT
            )
        except subprocess.TimeoutExpired as exc:
            raise ChainTimeoutError(
                operation, "Broadcast did not return, the tx may have been sent"
            ) from exc

        if completed.returncode != 0:
            raise self._classify_failure(operation, completed.stderr, sent=True)

        response = _parse_json(operation, completed.stdout)
        if int(response.get("code") or 0) != 0:
            raise ChainRejectedError(
                operation, response.get("raw_log") or f"code {response.get('code')}"
            )
        tx_hash = response.get("txhash")
        if not tx_hash:
            raise UnexpectedResponseError(
                f"Broadcast response without txhash: {response}"
            )
        return self._wait_for_tx(operation, tx_hash)

    def _wait_for_tx(self, operation: str, tx_hash: str) -> ExecuteResult:
        deadline = time.monotonic() + self._chain.broadcast_timeout
        while True:
            try:
                completed = self._run(
                    operation,
                    [
                        "query",
                        "tx",
                        tx_hash,
                        "--node",
                        self._chain.rpc_endpoint,
                        "--output",
                        "json",
                    ],
                    DEFAULT_COMMAND_TIMEOUT,
                )
            except (subprocess.TimeoutExpired, ChainUnavailableError) as exc:
                raise ChainTimeoutError(
                    operation, f"Lost the node while waiting for tx {tx_hash}"
                ) from exc
            if completed.returncode == 0:
                payload = _parse_json(operation, completed.stdout)
                if int(payload.get("code") or 0) != 0:
                    raise ChainRejectedError(
                        operation,
                        f"tx {tx_hash} failed: {payload.get('raw_log', '')}",
                    )
                return ExecuteResult.from_tx_response(payload)

            stderr = completed.stderr.lower()
            if not any(marker in stderr for marker in _TX_NOT_FOUND_MARKERS):
                # broadcast already happened, so the outcome is unknown
                raise ChainTimeoutError(
                    operation,
                    f"Cannot confirm tx {tx_hash}: {completed.stderr.strip()}",
                )

            if time.monotonic() >= deadline:
                raise ChainTimeoutError(
                    operation,
                    f"tx {tx_hash} not included after "
                    f"{self._chain.broadcast_timeout}s",
                )
            time.sleep(self._poll_interval)

    @staticmethod
    def _classify_failure(
        operation: str, stderr: str, *, sent: bool
    ) -> ChainRejectedError | ChainTimeoutError | ChainUnavailableError:
        """Map a failed command onto a chain error.

        For broadcasts (``sent``), a request that may have reached the node
        without an answer has an unknown outcome.
        """
        message = stderr.strip() or "command failed without output"
        lowered = message.lower()
        if any(marker in lowered for marker in _UNREACHABLE_MARKERS):
            return ChainUnavailableError(operation, message)
        if any(marker in lowered for marker in _NO_RESPONSE_MARKERS):
            if sent:
                return ChainTimeoutError(operation, message)
            return ChainUnavailableError(operation, message)
        return ChainRejectedError(operation, message)


def _parse_json(operation: str, output: str) -> dict[str, Any]:
    try:
        payload = json.loads(output)
    except json.JSONDecodeError as exc:
        raise UnexpectedResponseError(
            f"{operation} returned non-JSON output: {output[:200]!r}"
        ) from exc
    if not isinstance(payload, dict):
        raise UnexpectedResponseError(f"{operation} returned {type(payload).__name__}")
    return payload
