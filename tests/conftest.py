"""Pytest configuration and shared fixtures for cwdeploy tests."""

import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from cwdeploy.chain.base import BaseChainAdapter
from cwdeploy.models.chain import ExecuteResult, TxEvent
from cwdeploy.models.config import Coin, DeploymentConfig

PREFIX = "neutron"
SENDER = "neutron1deployer"

QueryHandler = Callable[[str, dict[str, Any]], Any]


class FakeChainAdapter(BaseChainAdapter):
    """In-memory chain that records every call.

    Code ids are assigned in upload order and addresses are derived from the
    instantiate label, so repeated deployments produce identical state.

    Attributes:
        calls: ``(operation, payload)`` for every upload/instantiate/execute
        fail_at: 1-based transaction number -> exception raised by that call
        land_before_fail: transaction numbers whose effect is applied before
            the configured exception is raised (ambiguous outcomes)
    """

    def __init__(self, prefix: str = PREFIX, sender: str = SENDER) -> None:
        self.prefix = prefix
        self._sender = sender
        self.calls: list[tuple[str, Any]] = []
        self.queries: list[tuple[str, dict[str, Any]]] = []
        self.fail_at: dict[int, BaseException] = {}
        self.land_before_fail: set[int] = set()
        self.code_ids: dict[bytes, str] = {}
        self.contracts: dict[str, dict[str, Any]] = {}
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.balances: dict[tuple[str, str], int] = {}
        self.query_handler: QueryHandler | None = None
        self._tx_count = 0

    @property
    def sender(self) -> str:
        return self._sender

    @property
    def tx_count(self) -> int:
        return self._tx_count

    def _begin(self, operation: str, payload: Any) -> tuple[int, BaseException | None]:
        self._tx_count += 1
        self.calls.append((operation, payload))
        return self._tx_count, self.fail_at.get(self._tx_count)

    def upload(self, wasm: bytes) -> str:
        number, error = self._begin("upload", wasm)
        if error is not None and number not in self.land_before_fail:
            raise error
        code_id = self.code_ids.setdefault(wasm, str(len(self.code_ids) + 1))
        if error is not None:
            raise error
        return code_id

    def instantiate(
        self,
        module_id: str,
        init_msg: dict[str, Any],
        label: str,
        *,
        admin: str | None = None,
    ) -> str:
        number, error = self._begin("instantiate", (module_id, label))
        if error is not None and number not in self.land_before_fail:
            raise error
        address = f"{self.prefix}1{label}"
        self.contracts[address] = {"module_id": module_id, "init_msg": init_msg}
        if error is not None:
            raise error
        return address

    def execute(
        self,
        address: str,
        msg: dict[str, Any],
        *,
        funds: list[Coin] | None = None,
    ) -> ExecuteResult:
        number, error = self._begin("execute", (address, msg))
        if error is not None and number not in self.land_before_fail:
            raise error
        self.executed.append((address, msg))
        if error is not None:
            raise error
        return ExecuteResult(
            tx_hash=f"TX{number:04d}",
            gas_used=100,
            events=[TxEvent(type="wasm", attributes={"_contract_address": address})],
        )

    def query_smart(self, address: str, msg: dict[str, Any]) -> Any:
        self.queries.append((address, msg))
        if self.query_handler is None:
            return None
        return self.query_handler(address, msg)

    def query_balance(self, address: str, denom: str) -> int:
        return self.balances.get((address, denom), 0)

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]


@pytest.fixture
def fake_chain() -> FakeChainAdapter:
    """Fresh in-memory chain adapter."""
    return FakeChainAdapter()


@pytest.fixture
def make_chain() -> Callable[[], FakeChainAdapter]:
    """Factory for additional in-memory chain adapters."""
    return FakeChainAdapter


def base_config_data(tmp_path: Path) -> dict[str, Any]:
    """Minimal but complete deployment configuration."""
    return {
        "label": "deployer-owner",
        "chain": {
            "id": "pion-1",
            "prefix": PREFIX,
            "rpc_endpoint": "http://localhost:26657",
            "base_denom": "untrn",
        },
        "deployer_address": SENDER,
        "artifacts_dir": str(tmp_path / "artifacts"),
        "state_dir": str(tmp_path / "state"),
        "safety_fund_addr": "neutron1safety",
        "fee_collector_addr": "neutron1feecollector",
        "protocol_admin_addr": "neutron1admin",
        "oracle": {"name": "wasm", "base_denom": "uusd"},
        "rewards_collector": {
            "name": "neutron",
            "channel_id": "channel-0",
            "safety_fund_config": {"target_denom": "uusdc"},
            "revenue_share_config": {"target_denom": "uusdc"},
            "fee_collector_config": {"target_denom": "umars", "transfer_type": "ibc"},
        },
        "swapper": {
            "name": "astroport",
            "routes": [
                {
                    "denom_in": "untrn",
                    "denom_out": "uusdc",
                    "route": {"swaps": [{"from": "untrn", "to": "uusdc"}]},
                }
            ],
        },
        "astroport": {"factory": "neutron1factory", "router": "neutron1router"},
        "assets": [
            {
                "denom": "untrn",
                "symbol": "NTRN",
                "max_loan_to_value": "0.35",
                "liquidation_threshold": "0.4",
                "liquidation_bonus": {
                    "max_lb": "0.05",
                    "min_lb": "0",
                    "slope": "2",
                    "starting_lb": "0",
                },
                "protocol_liquidation_fee": "0.5",
                "deposit_cap": "5000000000000",
                "reserve_factor": "0.1",
                "interest_rate_model": {
                    "optimal_utilization_rate": "0.6",
                    "base": "0",
                    "slope_1": "0.15",
                    "slope_2": "3",
                },
            }
        ],
        "oracle_configs": [
            {"denom": "untrn", "price_source": {"fixed": {"price": "1"}}},
            {"denom": "uusdc", "price_source": {"fixed": {"price": "1"}}},
        ],
    }


@pytest.fixture
def config_data(tmp_path: Path) -> dict[str, Any]:
    """Raw deployment configuration mapping, paths under tmp_path."""
    return base_config_data(tmp_path)


@pytest.fixture
def deployment_config(config_data: dict[str, Any]) -> DeploymentConfig:
    """Validated deployment configuration."""
    return DeploymentConfig(**config_data)


@pytest.fixture
def isolated_env() -> Generator[dict[str, str], None, None]:
    """Provide isolated environment variables for testing.

    Yields:
        Dictionary of original environment variables

    Cleanup:
        Restores original environment after test
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)
