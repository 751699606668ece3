"""The concrete deployment plan for the lending protocol.

``build_phases`` turns a ``DeploymentConfig`` into the authored, linear list of
setup steps (uploads, instantiations in dependency order, wiring, per-item
configuration) followed by the optional ownership hand-over. Validation flows
run between the two phases, while the deployer still owns every contract.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from cwdeploy.chain.base import BaseChainAdapter
from cwdeploy.deploy import messages
from cwdeploy.deploy.steps import (
    ExecuteStep,
    InstantiateStep,
    Step,
    StepContext,
    UploadStep,
)
from cwdeploy.lib.errors import ChainRejectedError, DeploymentError
from cwdeploy.lib.logging_config import get_logger
from cwdeploy.models.config import DeploymentConfig

logger = get_logger(__name__)

# Contracts whose ownership moves to the multisig at the end of a deployment
OWNED_CONTRACTS = (
    "address_provider",
    "red_bank",
    "incentives",
    "oracle",
    "rewards_collector",
    "swapper",
    "params",
    "health",
    "credit_manager",
)


def artifact_names(config: DeploymentConfig) -> dict[str, str]:
    """Map module names to wasm artifact names, in upload order."""
    names = {
        "red_bank": "mars_red_bank",
        "address_provider": "mars_address_provider",
        "incentives": "mars_incentives",
        "oracle": f"mars_oracle_{config.oracle.name}",
        "rewards_collector": f"mars_rewards_collector_{config.rewards_collector.name}",
        "swapper": f"mars_swapper_{config.swapper.name}",
    }
    if config.duality_swapper is not None:
        names["duality_swapper"] = f"mars_swapper_{config.duality_swapper.name}"
    names |= {
        "params": "mars_params",
        "account_nft": "mars_account_nft",
        "zapper": config.credit_manager.zapper_contract_name,
        "credit_manager": "mars_credit_manager",
        "health": "mars_rover_health",
    }
    if config.perps is not None:
        names["perps"] = "mars_perps"
    names["vault"] = "mars_vault"
    return names


def artifact_path(config: DeploymentConfig, artifact: str) -> Path:
    """Location of a wasm artifact."""
    return Path(config.artifacts_dir) / f"{artifact}.wasm"


def address_provider_entries(config: DeploymentConfig) -> list[tuple[str, str | None]]:
    """Address types registered in the address provider.

    Returns:
        ``(address_type, contract)`` pairs for deployed contracts, followed by
        ``(address_type, None)`` for addresses taken from the configuration.
    """
    entries: list[tuple[str, str | None]] = [
        ("red_bank", "red_bank"),
        ("incentives", "incentives"),
        ("oracle", "oracle"),
        ("rewards_collector", "rewards_collector"),
        ("params", "params"),
        ("credit_manager", "credit_manager"),
        ("swapper", "swapper"),
        ("health", "health"),
    ]
    if config.perps is not None:
        entries.append(("perps", "perps"))
    entries += [
        ("safety_fund", None),
        ("fee_collector", None),
        ("protocol_admin", None),
    ]
    if config.astroport is not None and config.astroport.incentives:
        entries.append(("astroport_incentives", None))
    return entries


def _external_address(config: DeploymentConfig, address_type: str) -> str:
    if address_type == "astroport_incentives":
        return (config.astroport.incentives or "") if config.astroport else ""
    return str(getattr(config, f"{address_type}_addr"))


def _query_confirm(
    contract: str,
    query: dict[str, Any],
    landed: Callable[[Any], bool] = lambda response: response is not None,
) -> Callable[[StepContext], bool]:
    """Build a check that queries a contract to see if an action landed.

    A rejected query (typically "not found") counts as not landed.
    """

    def confirm(ctx: StepContext) -> bool:
        try:
            response = ctx.chain.query_smart(ctx.address(contract), query)
        except ChainRejectedError:
            return False
        return landed(response)

    return confirm


def _upload_steps(config: DeploymentConfig) -> list[Step]:
    return [
        UploadStep(module, artifact_path(config, artifact))
        for module, artifact in artifact_names(config).items()
    ]


def _instantiate_steps(config: DeploymentConfig) -> list[Step]:
    def owner(ctx: StepContext) -> str:
        return ctx.chain.sender

    steps: list[Step] = [
        InstantiateStep(
            "address_provider",
            "address_provider",
            lambda ctx: messages.address_provider_init(ctx.config, owner(ctx)),
        ),
        InstantiateStep(
            "red_bank",
            "red_bank",
            lambda ctx: messages.red_bank_init(
                owner(ctx), ctx.address("address_provider")
            ),
            references=["address_provider"],
        ),
        InstantiateStep(
            "incentives",
            "incentives",
            lambda ctx: messages.incentives_init(
                ctx.config, owner(ctx), ctx.address("address_provider")
            ),
            references=["address_provider"],
        ),
        InstantiateStep(
            "oracle",
            "oracle",
            lambda ctx: messages.oracle_init(ctx.config, owner(ctx)),
        ),
        InstantiateStep(
            "rewards_collector",
            "rewards_collector",
            lambda ctx: messages.rewards_collector_init(
                ctx.config, owner(ctx), ctx.address("address_provider")
            ),
            references=["address_provider"],
        ),
        InstantiateStep(
            "swapper",
            "swapper",
            lambda ctx: messages.swapper_init(owner(ctx)),
        ),
    ]
    if config.duality_swapper is not None:
        steps.append(
            InstantiateStep(
                "duality_swapper",
                "duality_swapper",
                lambda ctx: messages.swapper_init(owner(ctx)),
            )
        )
    steps += [
        InstantiateStep(
            "params",
            "params",
            lambda ctx: messages.params_init(
                ctx.config, owner(ctx), ctx.address("address_provider")
            ),
            references=["address_provider"],
        ),
        InstantiateStep(
            "zapper",
            "zapper",
            lambda ctx: messages.zapper_init(ctx.address("oracle")),
            references=["oracle"],
        ),
        InstantiateStep(
            "health",
            "health",
            lambda ctx: messages.health_init(owner(ctx)),
        ),
    ]

    cm_refs = [
        "red_bank",
        "oracle",
        "swapper",
        "zapper",
        "health",
        "params",
        "incentives",
    ]
    if config.duality_swapper is not None:
        cm_refs.append("duality_swapper")
    steps += [
        InstantiateStep(
            "credit_manager",
            "credit_manager",
            lambda ctx: messages.credit_manager_init(
                ctx.config, owner(ctx), {name: ctx.address(name) for name in cm_refs}
            ),
            references=cm_refs,
        ),
        InstantiateStep(
            "account_nft",
            "account_nft",
            lambda ctx: messages.account_nft_init(
                ctx.config, owner(ctx), ctx.address("address_provider")
            ),
            references=["address_provider"],
        ),
    ]
    if config.perps is not None:
        steps.append(
            InstantiateStep(
                "perps",
                "perps",
                lambda ctx: messages.perps_init(
                    ctx.config, ctx.address("address_provider")
                ),
                references=["address_provider"],
            )
        )
    return steps


def _wiring_steps(config: DeploymentConfig) -> list[Step]:
    has_perps = config.perps is not None
    steps: list[Step] = [
        ExecuteStep(
            "health:set-credit-manager",
            "health",
            lambda ctx: messages.health_set_credit_manager(
                ctx.address("credit_manager")
            ),
            references=["credit_manager"],
        ),
        ExecuteStep(
            "account-nft:propose-owner",
            "account_nft",
            lambda ctx: messages.nft_propose_minter(ctx.address("credit_manager")),
            references=["credit_manager"],
        ),
        ExecuteStep(
            "credit-manager:accept-nft",
            "credit_manager",
            lambda ctx: messages.credit_manager_accept_nft(ctx.address("account_nft")),
            references=["account_nft"],
        ),
        ExecuteStep(
            "credit-manager:config",
            "credit_manager",
            lambda ctx: messages.credit_manager_config(
                ctx.address("rewards_collector"),
                ctx.address("perps") if has_perps else None,
            ),
            references=["rewards_collector", *(["perps"] if has_perps else [])],
        ),
    ]

    for address_type, contract in address_provider_entries(config):
        if contract is not None:
            build = _set_contract_address(address_type, contract)
            references = [contract]
        else:
            build = _set_external_address(address_type)
            references = []
        steps.append(
            ExecuteStep(
                f"address-provider:set:{address_type}",
                "address_provider",
                build,
                references=references,
                confirm=_query_confirm(
                    "address_provider",
                    messages.address_query(address_type),
                    lambda response: isinstance(response, dict)
                    and bool(response.get("address")),
                ),
            )
        )

    if config.swapper.name == "astroport" and config.astroport is not None:
        astroport = config.astroport
        steps.append(
            ExecuteStep(
                "swapper:astroport-config",
                "swapper",
                lambda ctx: messages.swapper_astroport_config(astroport),
            )
        )
    return steps


def _set_contract_address(
    address_type: str, contract: str
) -> Callable[[StepContext], Any]:
    return lambda ctx: messages.set_address(address_type, ctx.address(contract))


def _set_external_address(address_type: str) -> Callable[[StepContext], Any]:
    return lambda ctx: messages.set_address(
        address_type, _external_address(ctx.config, address_type)
    )


def _item_steps(config: DeploymentConfig) -> list[Step]:
    steps: list[Step] = []

    for route in config.swapper.routes:
        steps.append(
            ExecuteStep(
                f"swapper:route:{route.key}",
                "swapper",
                lambda ctx, route=route: messages.set_route(route),
                confirm=_query_confirm(
                    "swapper", messages.route_query(route.denom_in, route.denom_out)
                ),
            )
        )

    if config.duality_swapper is not None:
        for route in config.duality_swapper.routes:
            steps.append(
                ExecuteStep(
                    f"duality-swapper:route:{route.key}",
                    "duality_swapper",
                    lambda ctx, route=route: messages.set_route(route),
                    confirm=_query_confirm(
                        "duality_swapper",
                        messages.route_query(route.denom_in, route.denom_out),
                    ),
                )
            )

    for source in config.oracle_configs:
        steps.append(
            ExecuteStep(
                f"oracle:price-source:{source.denom}",
                "oracle",
                lambda ctx, source=source: messages.set_price_source(source),
                confirm=_query_confirm(
                    "oracle",
                    messages.price_source_query(source.denom),
                    lambda response, source=source: isinstance(response, dict)
                    and response.get("price_source") == source.price_source,
                ),
            )
        )

    for asset in config.assets:
        steps.append(
            ExecuteStep(
                f"params:asset:{asset.denom}",
                "params",
                lambda ctx, asset=asset: messages.update_asset_params(asset),
                confirm=_query_confirm(
                    "params", messages.asset_params_query(asset.denom)
                ),
            )
        )
        steps.append(
            ExecuteStep(
                f"red-bank:market:{asset.denom}",
                "red_bank",
                lambda ctx, asset=asset: messages.init_market(asset),
                confirm=_query_confirm("red_bank", messages.market_query(asset.denom)),
            )
        )

    for vault in config.vaults:
        steps.append(
            ExecuteStep(
                f"params:vault:{vault.addr}",
                "params",
                lambda ctx, vault=vault: messages.update_vault_config(vault),
                confirm=_query_confirm(
                    "params", messages.vault_config_query(vault.addr)
                ),
            )
        )

    if config.perps is not None:
        for perp in config.perps.denoms:
            steps.append(
                ExecuteStep(
                    f"params:perp:{perp.denom}",
                    "params",
                    lambda ctx, perp=perp: messages.update_perp_params(perp),
                    references=["perps"],
                    confirm=_query_confirm(
                        "params", messages.perp_params_query(perp.denom)
                    ),
                )
            )
    return steps


def _ownership_steps(config: DeploymentConfig) -> list[Step]:
    multisig = config.multisig_addr
    if not multisig:
        return []
    contracts = list(OWNED_CONTRACTS)
    if config.duality_swapper is not None:
        contracts.insert(contracts.index("swapper") + 1, "duality_swapper")
    return [
        ExecuteStep(
            f"owner:{contract}:multisig",
            contract,
            lambda ctx: messages.update_owner(multisig),
        )
        for contract in contracts
    ]


def build_phases(config: DeploymentConfig) -> tuple[list[Step], list[Step]]:
    """Build the setup and ownership hand-over phases of a deployment.

    Returns:
        ``(setup, handover)``; ``handover`` is empty without a multisig
    """
    setup = [
        *_upload_steps(config),
        *_instantiate_steps(config),
        *_wiring_steps(config),
        *_item_steps(config),
    ]
    handover = _ownership_steps(config)
    logger.debug(
        f"Built deployment plan with {len(setup)} setup and "
        f"{len(handover)} hand-over steps"
    )
    return setup, handover


def build_plan(config: DeploymentConfig) -> list[Step]:
    """Build the full, ordered deployment plan for a configuration."""
    setup, handover = build_phases(config)
    return [*setup, *handover]


def check_deployer_balance(config: DeploymentConfig, chain: BaseChainAdapter) -> int:
    """Ensure the deployer can pay for the deployment.

    Returns:
        The deployer's base denom balance

    Raises:
        DeploymentError: If the balance is below ``min_deployer_balance``
    """
    denom = config.chain.base_denom
    balance = chain.query_balance(config.deployer_address, denom)
    required = int(config.min_deployer_balance)
    if balance < required:
        raise DeploymentError(
            operation="preflight",
            message=(
                f"Deployer {config.deployer_address} holds {balance}{denom}, "
                f"at least {required}{denom} is required"
            ),
        )
    logger.info(f"Deployer balance: {balance}{denom}")
    return balance
