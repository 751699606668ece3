"""End-to-end validation flows run against a finished deployment.

Flows send real user transactions from the deployer account and check that
the queried positions moved as expected. Coin balances must move by exactly
the amount sent. They are not resumable and leave the deployer's credit
account empty when they finish.

Liquidation is not exercised: it needs an undercollateralised account, which
a fresh deployment with fixed parameters cannot produce on its own.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from cwdeploy.chain.base import BaseChainAdapter
from cwdeploy.lib.errors import (
    ChainRejectedError,
    DependencyMissingError,
    FlowAssertionError,
)
from cwdeploy.lib.logging_config import get_logger
from cwdeploy.models.config import Coin, DeploymentConfig, TestActions
from cwdeploy.models.state import DeploymentState, address_key

logger = get_logger(__name__)

RED_BANK_FLOW = "red-bank"
CREDIT_ACCOUNT_FLOW = "credit-account"
VAULT_FLOW = "vault"
PERP_FLOW = "perps"

CheckCallback = Callable[[str, str], None]


def _amount(entry: dict[str, Any] | None) -> int:
    if not entry:
        return 0
    return int(entry.get("amount") or 0)


def _find(coins: list[dict[str, Any]], denom: str) -> int:
    for coin in coins:
        if coin.get("denom") == denom:
            return _amount(coin)
    return 0


def _exact(denom: str, amount: str) -> dict[str, Any]:
    return {"denom": denom, "amount": {"exact": amount}}


class FlowValidator:
    """Exercises the red bank and credit manager with small user actions.

    Args:
        config: Deployment configuration; ``test_actions`` must be set
        state: Progress state holding the deployed addresses
        chain: Chain adapter; its sender acts as the test user
        on_check: Called with ``(flow, check)`` after each passing check
    """

    def __init__(
        self,
        config: DeploymentConfig,
        state: DeploymentState,
        chain: BaseChainAdapter,
        on_check: CheckCallback | None = None,
    ) -> None:
        if config.test_actions is None:
            raise FlowAssertionError("setup", "No test_actions configured")
        self.config = config
        self.actions: TestActions = config.test_actions
        self.state = state
        self.chain = chain
        self.on_check = on_check
        self.denom = config.chain.base_denom
        self.account_id: str | None = None

    def run(self) -> list[str]:
        """Run every configured flow and return the names of the passed checks."""
        passed: list[str] = []
        passed += self.run_red_bank_flow()
        passed += self.run_credit_account_flow()
        if self.actions.vault is not None:
            passed += self.run_vault_flow()
        if self.actions.perp is not None:
            passed += self.run_perp_flow()
        return passed

    def _address(self, contract: str) -> str:
        address = self.state.get_address(contract)
        if address is None:
            raise DependencyMissingError("flows", str(address_key(contract)))
        return address

    def _passed(self, flow: str, check: str, passed: list[str]) -> None:
        logger.info(f"[{flow}] {check} ok")
        passed.append(f"{flow}:{check}")
        if self.on_check is not None:
            self.on_check(flow, check)

    @staticmethod
    def _expect(flow: str, check: str, condition: bool, detail: str) -> None:
        if not condition:
            raise FlowAssertionError(flow, f"{check}: {detail}")

    # Red bank

    def _collateral(self) -> int:
        return _amount(
            self.chain.query_smart(
                self._address("red_bank"),
                {"user_collateral": {"user": self.chain.sender, "denom": self.denom}},
            )
        )

    def _debt(self) -> int:
        return _amount(
            self.chain.query_smart(
                self._address("red_bank"),
                {"user_debt": {"user": self.chain.sender, "denom": self.denom}},
            )
        )

    def run_red_bank_flow(self) -> list[str]:
        """Deposit, borrow, repay and withdraw against the red bank."""
        flow = RED_BANK_FLOW
        passed: list[str] = []
        red_bank = self._address("red_bank")
        deposit = int(self.actions.deposit_amount)
        borrow = int(self.actions.borrow_amount)
        repay = int(self.actions.repay_amount)
        withdraw = int(self.actions.withdraw_amount)

        before = self._collateral()
        self.chain.execute(
            red_bank,
            {"deposit": {}},
            funds=[Coin(denom=self.denom, amount=str(deposit))],
        )
        after = self._collateral()
        self._expect(
            flow,
            "deposit",
            after == before + deposit,
            f"collateral {before} -> {after}",
        )
        self._passed(flow, "deposit", passed)

        before = self._debt()
        self.chain.execute(
            red_bank, {"borrow": {"denom": self.denom, "amount": str(borrow)}}
        )
        after = self._debt()
        self._expect(
            flow, "borrow", after >= before + borrow, f"debt {before} -> {after}"
        )
        self._passed(flow, "borrow", passed)

        before = after
        self.chain.execute(
            red_bank, {"repay": {}}, funds=[Coin(denom=self.denom, amount=str(repay))]
        )
        after = self._debt()
        self._expect(flow, "repay", after < before, f"debt {before} -> {after}")
        self._passed(flow, "repay", passed)

        before = self._collateral()
        self.chain.execute(
            red_bank, {"withdraw": {"denom": self.denom, "amount": str(withdraw)}}
        )
        after = self._collateral()
        self._expect(
            flow,
            "withdraw",
            after <= before - withdraw,
            f"collateral {before} -> {after}",
        )
        self._passed(flow, "withdraw", passed)
        return passed

    # Credit account

    def _tokens(self) -> set[str]:
        response = self.chain.query_smart(
            self._address("account_nft"), {"tokens": {"owner": self.chain.sender}}
        )
        return set((response or {}).get("tokens") or [])

    def _positions(self) -> dict[str, Any]:
        response = self.chain.query_smart(
            self._address("credit_manager"),
            {"positions": {"account_id": self.account_id}},
        )
        if not isinstance(response, dict):
            raise FlowAssertionError(
                CREDIT_ACCOUNT_FLOW, "positions query returned no data"
            )
        return response

    def _update(
        self, actions: list[dict[str, Any]], funds: list[Coin] | None = None
    ) -> None:
        self.chain.execute(
            self._address("credit_manager"),
            {
                "update_credit_account": {
                    "account_id": self.account_id,
                    "actions": actions,
                }
            },
            funds=funds,
        )

    def _create_account(self) -> str:
        before = self._tokens()
        self.chain.execute(
            self._address("credit_manager"), {"create_credit_account": "default"}
        )
        created = self._tokens() - before
        if len(created) != 1:
            raise FlowAssertionError(
                CREDIT_ACCOUNT_FLOW,
                f"expected one new account token, found {sorted(created)}",
            )
        return created.pop()

    def _ensure_account(self) -> str:
        if self.account_id is None:
            self.account_id = self._create_account()
            logger.info(f"Created credit account {self.account_id}")
        return self.account_id

    def _deposit_of(self, denom: str) -> int:
        return _find(self._positions().get("deposits") or [], denom)

    def _refund(self, flow: str, passed: list[str]) -> None:
        self._update([{"refund_all_coin_balances": {}}])
        deposits = self._positions().get("deposits") or []
        leftover = [c for c in deposits if _amount(c) > 0]
        self._expect(flow, "refund", not leftover, f"deposits left: {leftover}")
        self._passed(flow, "refund", passed)

    def run_credit_account_flow(self) -> list[str]:
        """Create a credit account and walk it through every action."""
        flow = CREDIT_ACCOUNT_FLOW
        passed: list[str] = []
        actions = self.actions
        denom = self.denom
        secondary = actions.secondary_denom

        self.account_id = self._create_account()
        logger.info(f"Created credit account {self.account_id}")
        self._passed(flow, "create-account", passed)

        self._update(
            [{"deposit": {"denom": denom, "amount": actions.deposit_amount}}],
            funds=[Coin(denom=denom, amount=actions.deposit_amount)],
        )
        deposited = self._deposit_of(denom)
        self._expect(
            flow,
            "deposit",
            deposited == int(actions.deposit_amount),
            f"deposit of {denom} is {deposited}",
        )
        self._passed(flow, "deposit", passed)

        self._update([{"lend": _exact(denom, actions.lend_amount)}])
        lent = _find(self._positions().get("lends") or [], denom)
        self._expect(flow, "lend", lent == int(actions.lend_amount), f"lent {lent}")
        self._passed(flow, "lend", passed)

        self._update([{"borrow": {"denom": denom, "amount": actions.borrow_amount}}])
        debt = _find(self._positions().get("debts") or [], denom)
        self._expect(flow, "borrow", debt == int(actions.borrow_amount), f"debt {debt}")
        self._passed(flow, "borrow", passed)

        swap = actions.swap
        self._update(
            [
                {
                    "swap_exact_in": {
                        "coin_in": _exact(denom, swap.amount),
                        "denom_out": secondary,
                        "slippage": swap.slippage,
                        "route": swap.route,
                    }
                }
            ]
        )
        received = self._deposit_of(secondary)
        self._expect(flow, "swap", received > 0, f"no {secondary} received")
        self._passed(flow, "swap", passed)

        self._update([{"repay": {"coin": _exact(denom, actions.repay_amount)}}])
        remaining = _find(self._positions().get("debts") or [], denom)
        self._expect(flow, "repay", remaining < debt, f"debt {debt} -> {remaining}")
        self._passed(flow, "repay", passed)

        self._update([{"reclaim": _exact(denom, actions.reclaim_amount)}])
        lent_after = _find(self._positions().get("lends") or [], denom)
        self._expect(flow, "reclaim", lent_after < lent, f"lent {lent} -> {lent_after}")
        self._passed(flow, "reclaim", passed)

        before = self._deposit_of(denom)
        self._update([{"withdraw": _exact(denom, actions.withdraw_amount)}])
        after = self._deposit_of(denom)
        self._expect(
            flow,
            "withdraw",
            before - after == int(actions.withdraw_amount),
            f"deposit {before} -> {after}",
        )
        self._passed(flow, "withdraw", passed)

        self._refund(flow, passed)
        return passed

    # Vault

    def _vault_tokens(self, vault: str) -> tuple[str, str]:
        info = self.chain.query_smart(vault, {"info": {}})
        base_token = (info or {}).get("base_token")
        vault_token = (info or {}).get("vault_token")
        if not base_token or not vault_token:
            raise FlowAssertionError(VAULT_FLOW, f"vault {vault} returned no info")
        return base_token, vault_token

    def _has_lockup(self, vault: str) -> bool:
        try:
            response = self.chain.query_smart(
                vault, {"vault_extension": {"lockup": {"lockup_duration": {}}}}
            )
        except ChainRejectedError:
            return False
        return response is not None

    def _vault_position(self, vault: str) -> tuple[int, int, int]:
        """Return ``(unlocked, locked, unlocking positions)`` held in a vault."""
        for entry in self._positions().get("vaults") or []:
            if (entry.get("vault") or {}).get("address") != vault:
                continue
            amount = entry.get("amount") or {}
            if "unlocked" in amount:
                return int(amount["unlocked"]), 0, 0
            locking = amount.get("locking") or {}
            return (
                0,
                int(locking.get("locked") or 0),
                len(locking.get("unlocking") or []),
            )
        return 0, 0, 0

    def run_vault_flow(self) -> list[str]:
        """Zap into the first configured vault's base token, enter and leave it."""
        flow = VAULT_FLOW
        passed: list[str] = []
        params = self.actions.vault
        if params is None:
            raise FlowAssertionError(flow, "No test_actions.vault configured")
        if not self.config.vaults:
            raise FlowAssertionError(flow, "No vault configured")
        vault = self.config.vaults[0].addr
        zap = self.actions.zap
        self._ensure_account()
        base_token, vault_token = self._vault_tokens(vault)

        if zap is not None:
            coins_in = [_exact(c.denom, c.amount) for c in zap.coins_in]
            self._update(
                [{"deposit": c.model_dump()} for c in zap.coins_in], funds=zap.coins_in
            )
            self._update(
                [
                    {
                        "provide_liquidity": {
                            "coins_in": coins_in,
                            "lp_token_out": base_token,
                            "slippage": zap.slippage,
                        }
                    }
                ]
            )
            lp = self._deposit_of(base_token)
            self._expect(flow, "zap", lp > 0, f"no {base_token} received")
            self._passed(flow, "zap", passed)
        else:
            self._update(
                [{"deposit": {"denom": base_token, "amount": params.deposit_amount}}],
                funds=[Coin(denom=base_token, amount=params.deposit_amount)],
            )

        before = self._deposit_of(base_token)
        self._update(
            [
                {
                    "enter_vault": {
                        "vault": {"address": vault},
                        "coin": _exact(base_token, params.deposit_amount),
                    }
                }
            ]
        )
        after = self._deposit_of(base_token)
        unlocked, locked, _ = self._vault_position(vault)
        self._expect(
            flow,
            "enter",
            before - after == int(params.deposit_amount),
            f"{base_token} {before} -> {after}",
        )
        self._expect(flow, "enter", unlocked > 0 or locked > 0, f"no {vault_token}")
        self._passed(flow, "enter", passed)

        withdraw = int(params.withdraw_amount)
        if self._has_lockup(vault):
            self._update(
                [
                    {
                        "request_vault_unlock": {
                            "vault": {"address": vault},
                            "amount": params.withdraw_amount,
                        }
                    }
                ]
            )
            _, locked_after, unlocking = self._vault_position(vault)
            self._expect(
                flow,
                "request-unlock",
                locked - locked_after == withdraw and unlocking == 1,
                f"locked {locked} -> {locked_after}, {unlocking} unlocking",
            )
            self._passed(flow, "request-unlock", passed)
        else:
            before = self._deposit_of(base_token)
            self._update(
                [
                    {
                        "exit_vault": {
                            "vault": {"address": vault},
                            "amount": params.withdraw_amount,
                        }
                    }
                ]
            )
            after = self._deposit_of(base_token)
            unlocked_after, _, _ = self._vault_position(vault)
            self._expect(
                flow,
                "exit",
                after > before and unlocked - unlocked_after == withdraw,
                f"{base_token} {before} -> {after}",
            )
            self._passed(flow, "exit", passed)

            if zap is not None and zap.unzap_amount is not None:
                self._update(
                    [
                        {
                            "withdraw_liquidity": {
                                "lp_token": _exact(base_token, zap.unzap_amount),
                                "slippage": zap.slippage,
                            }
                        }
                    ]
                )
                remaining = self._deposit_of(base_token)
                self._expect(
                    flow,
                    "unzap",
                    after - remaining == int(zap.unzap_amount),
                    f"{base_token} {after} -> {remaining}",
                )
                self._passed(flow, "unzap", passed)

        self._refund(flow, passed)
        return passed

    # Perps

    def _perp_vault(self) -> dict[str, Any]:
        response = self.chain.query_smart(
            self._address("perps"),
            {
                "vault_position": {
                    "user_address": self._address("credit_manager"),
                    "account_id": self.account_id,
                }
            },
        )
        return response or {"deposit": {"amount": "0", "shares": "0"}, "unlocks": []}

    def _perp_size(self, denom: str) -> int:
        for position in self._positions().get("perps") or []:
            if position.get("denom") == denom:
                return int(position.get("size") or 0)
        return 0

    def run_perp_flow(self) -> list[str]:
        """Provide perp vault liquidity, open and close a position, then unlock."""
        flow = PERP_FLOW
        passed: list[str] = []
        params = self.actions.perp
        perps = self.config.perps
        if params is None or perps is None:
            raise FlowAssertionError(flow, "No perps or test_actions.perp configured")
        base = perps.base_denom
        self._ensure_account()

        before = self._deposit_of(base)
        self._update(
            [{"deposit": {"denom": base, "amount": params.margin_amount}}],
            funds=[Coin(denom=base, amount=params.margin_amount)],
        )
        after = self._deposit_of(base)
        self._expect(
            flow,
            "deposit",
            after - before == int(params.margin_amount),
            f"{base} {before} -> {after}",
        )
        self._passed(flow, "deposit", passed)

        deposit_before = _amount(self._perp_vault().get("deposit"))
        self._update(
            [
                {
                    "deposit_to_perp_vault": {
                        "coin": _exact(base, params.vault_deposit_amount)
                    }
                }
            ]
        )
        position = self._perp_vault()
        deposited = _amount(position.get("deposit"))
        self._expect(
            flow,
            "vault-deposit",
            deposited - deposit_before == int(params.vault_deposit_amount),
            f"vault deposit {deposit_before} -> {deposited}",
        )
        self._passed(flow, "vault-deposit", passed)

        self._update(
            [{"execute_perp_order": {"denom": params.denom, "order_size": params.size}}]
        )
        size = self._perp_size(params.denom)
        self._expect(flow, "open", size == int(params.size), f"size {size}")
        self._passed(flow, "open", passed)

        self._update([{"close_perp_position": {"denom": params.denom}}])
        size = self._perp_size(params.denom)
        self._expect(flow, "close", size == 0, f"size {size} after close")
        self._passed(flow, "close", passed)

        unlocks = len(position.get("unlocks") or [])
        shares = str((position.get("deposit") or {}).get("shares") or "0")
        self._update([{"unlock_from_perp_vault": {"shares": shares}}])
        unlocks_after = len(self._perp_vault().get("unlocks") or [])
        self._expect(
            flow,
            "vault-unlock",
            unlocks_after == unlocks + 1,
            f"{unlocks_after} unlocks",
        )
        self._passed(flow, "vault-unlock", passed)

        self._refund(flow, passed)
        return passed
