"""JSON message builders for the lending protocol contracts.

Builders are plain functions over configuration values and already-recorded
addresses, so they can be tested without a chain.
"""

from __future__ import annotations

from typing import Any

from cwdeploy.models.config import (
    AssetConfig,
    AstroportConfig,
    DeploymentConfig,
    PerpDenomConfig,
    PriceSourceConfig,
    SwapRoute,
    VaultConfig,
)

Msg = dict[str, Any]

ACCOUNT_NFT_NAME = "credit-manager-accounts"
ACCOUNT_NFT_SYMBOL = "CMACC"


# Instantiate messages


def address_provider_init(config: DeploymentConfig, owner: str) -> Msg:
    return {"owner": owner, "prefix": config.chain.prefix}


def red_bank_init(owner: str, address_provider: str) -> Msg:
    return {"owner": owner, "config": {"address_provider": address_provider}}


def incentives_init(config: DeploymentConfig, owner: str, address_provider: str) -> Msg:
    return {
        "owner": owner,
        "address_provider": address_provider,
        "epoch_duration": config.incentives.epoch_duration,
        "max_whitelisted_denoms": config.incentives.max_whitelisted_denoms,
    }


def oracle_init(config: DeploymentConfig, owner: str) -> Msg:
    msg: Msg = {"owner": owner, "base_denom": config.oracle.base_denom}
    if config.oracle.custom_init_params:
        msg["custom_init"] = config.oracle.custom_init_params
    return msg


def rewards_collector_init(
    config: DeploymentConfig, owner: str, address_provider: str
) -> Msg:
    rc = config.rewards_collector
    return {
        "owner": owner,
        "address_provider": address_provider,
        "safety_tax_rate": rc.safety_tax_rate,
        "revenue_share_tax_rate": rc.revenue_share_tax_rate,
        "safety_fund_config": rc.safety_fund_config.model_dump(),
        "revenue_share_config": rc.revenue_share_config.model_dump(),
        "fee_collector_config": rc.fee_collector_config.model_dump(),
        "channel_id": rc.channel_id,
        "timeout_seconds": rc.timeout_seconds,
        "slippage_tolerance": rc.slippage_tolerance,
    }


def swapper_init(owner: str) -> Msg:
    return {"owner": owner}


def params_init(config: DeploymentConfig, owner: str, address_provider: str) -> Msg:
    return {
        "owner": owner,
        "risk_manager": None,
        "address_provider": address_provider,
        "max_perp_params": config.max_perp_params,
    }


def zapper_init(oracle: str) -> Msg:
    return {"oracle": oracle}


def health_init(owner: str) -> Msg:
    return {"owner": owner, "credit_manager": None}


def credit_manager_init(
    config: DeploymentConfig, owner: str, addresses: dict[str, str]
) -> Msg:
    """Credit manager init message.

    Args:
        config: Deployment configuration
        owner: Contract owner
        addresses: Recorded addresses of red_bank, oracle, swapper, zapper,
            health, params, incentives and optionally duality_swapper; without
            a duality swapper the main swapper fills that slot
    """
    cm = config.credit_manager
    if cm.keeper_fee_min is not None:
        keeper_fee = cm.keeper_fee_min.model_dump()
    else:
        keeper_fee = {"denom": config.chain.base_denom, "amount": "0"}

    return {
        "owner": owner,
        "red_bank": addresses["red_bank"],
        "oracle": addresses["oracle"],
        "swapper": addresses["swapper"],
        "duality_swapper": addresses.get("duality_swapper", addresses["swapper"]),
        "zapper": addresses["zapper"],
        "health_contract": addresses["health"],
        "params": addresses["params"],
        "incentives": addresses["incentives"],
        "max_unlocking_positions": cm.max_unlocking_positions,
        "max_slippage": cm.max_slippage,
        "keeper_fee_config": {"min_fee": keeper_fee},
        "perps_liquidation_bonus_ratio": cm.perps_liquidation_bonus_ratio,
    }


def account_nft_init(
    config: DeploymentConfig, minter: str, address_provider: str
) -> Msg:
    return {
        "max_value_for_burn": config.credit_manager.max_value_for_burn,
        "address_provider_contract": address_provider,
        "name": ACCOUNT_NFT_NAME,
        "symbol": ACCOUNT_NFT_SYMBOL,
        "minter": minter,
    }


def perps_init(config: DeploymentConfig, address_provider: str) -> Msg:
    perps = config.perps
    if perps is None:
        raise ValueError("perps configuration is missing")
    return {
        "address_provider": address_provider,
        "base_denom": perps.base_denom,
        "cooldown_period": perps.cooldown_period,
        "max_positions": perps.max_positions,
        "protocol_fee_rate": perps.protocol_fee_rate,
        "target_vault_collateralization_ratio": perps.target_collaterization_ratio,
        "deleverage_enabled": perps.deleverage_enabled,
        "vault_withdraw_enabled": perps.vault_withdraw_enabled,
        "max_unlocks": perps.max_unlocks,
    }


# Wiring messages


def health_set_credit_manager(credit_manager: str) -> Msg:
    return {"update_config": {"credit_manager": credit_manager}}


def nft_propose_minter(credit_manager: str) -> Msg:
    return {"update_ownership": {"transfer_ownership": {"new_owner": credit_manager}}}


def credit_manager_accept_nft(account_nft: str) -> Msg:
    return {"update_config": {"updates": {"account_nft": account_nft}}}


def credit_manager_config(rewards_collector: str, perps: str | None = None) -> Msg:
    updates: Msg = {"rewards_collector": rewards_collector}
    if perps:
        updates["perps"] = perps
    return {"update_config": {"updates": updates}}


def set_address(address_type: str, address: str) -> Msg:
    return {"set_address": {"address_type": address_type, "address": address}}


def swapper_astroport_config(astroport: AstroportConfig) -> Msg:
    config: Msg = {"factory": astroport.factory, "router": astroport.router}
    return {"update_config": {"config": config}}


def update_owner(proposed: str) -> Msg:
    return {"update_owner": {"propose_new_owner": {"proposed": proposed}}}


# Per-item configuration messages


def set_route(route: SwapRoute) -> Msg:
    return {
        "set_route": {
            "denom_in": route.denom_in,
            "denom_out": route.denom_out,
            "route": route.route,
        }
    }


def set_price_source(source: PriceSourceConfig) -> Msg:
    return {
        "set_price_source": {
            "denom": source.denom,
            "price_source": source.price_source,
        }
    }


def update_asset_params(asset: AssetConfig) -> Msg:
    params = {
        "denom": asset.denom,
        "credit_manager": {
            "whitelisted": asset.whitelisted,
            "hls": None,
        },
        "red_bank": {
            "borrow_enabled": asset.borrow_enabled,
            "deposit_enabled": asset.deposit_enabled,
        },
        "max_loan_to_value": asset.max_loan_to_value,
        "liquidation_threshold": asset.liquidation_threshold,
        "liquidation_bonus": asset.liquidation_bonus.model_dump(),
        "protocol_liquidation_fee": asset.protocol_liquidation_fee,
        "deposit_cap": asset.deposit_cap,
        "close_factor": asset.close_factor,
    }
    return {"update_asset_params": {"add_or_update": {"params": params}}}


def init_market(asset: AssetConfig) -> Msg:
    return {
        "init_asset": {
            "denom": asset.denom,
            "params": {
                "reserve_factor": asset.reserve_factor,
                "interest_rate_model": asset.interest_rate_model.model_dump(),
            },
        }
    }


def update_vault_config(vault: VaultConfig) -> Msg:
    config = {
        "addr": vault.addr,
        "deposit_cap": vault.deposit_cap.model_dump(),
        "max_loan_to_value": vault.max_loan_to_value,
        "liquidation_threshold": vault.liquidation_threshold,
        "whitelisted": vault.whitelisted,
        "hls": vault.hls,
    }
    return {"update_vault_config": {"add_or_update": {"config": config}}}


def update_perp_params(perp: PerpDenomConfig) -> Msg:
    return {
        "update_perp_params": {
            "add_or_update": {"params": perp.model_dump(exclude_none=True)}
        }
    }


# Queries


def price_source_query(denom: str) -> Msg:
    return {"price_source": {"denom": denom}}


def address_query(address_type: str) -> Msg:
    return {"address": address_type}


def asset_params_query(denom: str) -> Msg:
    return {"asset_params": {"denom": denom}}


def market_query(denom: str) -> Msg:
    return {"market": {"denom": denom}}


def route_query(denom_in: str, denom_out: str) -> Msg:
    return {"route": {"denom_in": denom_in, "denom_out": denom_out}}


def vault_config_query(addr: str) -> Msg:
    return {"vault_config": {"address": addr}}


def perp_params_query(denom: str) -> Msg:
    return {"perp_params": {"denom": denom}}
