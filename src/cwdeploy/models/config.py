"""Pydantic models for deployment configuration.

This module defines the configuration schema consumed by the deployment
pipeline: chain connection settings, per-contract init parameters, per-asset
risk parameters, oracle price sources, swap routes, perps markets and the
optional validation flow parameters.
"""

import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DECIMAL_PATTERN = re.compile(r"^\d+(\.\d+)?$")
UINT_PATTERN = re.compile(r"^\d+$")
LABEL_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


def _check_decimal(value: str) -> str:
    if not DECIMAL_PATTERN.match(value):
        raise ValueError(f"Invalid decimal: {value!r}. Expected e.g. '0.75'")
    return value


def _check_uint(value: str) -> str:
    if not UINT_PATTERN.match(value):
        raise ValueError(f"Invalid integer amount: {value!r}")
    return value


class Coin(BaseModel):
    """A denom/amount pair as sent to the chain."""

    model_config = ConfigDict(extra="forbid")

    denom: str = Field(..., description="Token denom")
    amount: str = Field(..., description="Integer amount in base units")

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Validate amount is a non-negative integer string."""
        return _check_uint(v)


class ChainConfig(BaseModel):
    """Chain connection settings.

    Attributes:
        id: Chain id (e.g. pion-1, neutron-1)
        prefix: Bech32 address prefix
        rpc_endpoint: Tendermint RPC endpoint of the node
        base_denom: Native fee denom
        gas_price: Gas price in base denom
        gas_adjustment: Multiplier applied to simulated gas
        binary: wasmd-compatible CLI used to sign and broadcast
        key_name: Name of the signing key in the CLI keyring
        keyring_backend: Keyring backend passed to the CLI
        broadcast_timeout: Seconds to wait for a broadcast tx to be included
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., description="Chain id")
    prefix: str = Field(..., description="Bech32 address prefix")
    rpc_endpoint: str = Field(..., description="Node RPC endpoint")
    base_denom: str = Field(..., description="Native fee denom")
    gas_price: float = Field(default=0.025, gt=0, description="Gas price")
    gas_adjustment: float = Field(default=1.4, ge=1, description="Gas adjustment")
    binary: str = Field(default="neutrond", description="Chain CLI binary")
    key_name: str = Field(default="deployer", description="Signing key name")
    keyring_backend: str = Field(default="test", description="Keyring backend")
    broadcast_timeout: int = Field(
        default=60, ge=1, description="Seconds to wait for tx inclusion"
    )


class OracleConfig(BaseModel):
    """Oracle contract settings."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Oracle flavour (wasm, osmosis)")
    base_denom: str = Field(..., description="Denom prices are quoted in")
    custom_init_params: dict[str, Any] | None = Field(
        default=None, description="Chain specific init parameters"
    )


class RewardConfig(BaseModel):
    """Distribution target for one share of collected rewards."""

    model_config = ConfigDict(extra="forbid")

    target_denom: str = Field(..., description="Denom rewards are swapped to")
    transfer_type: str = Field(default="bank", description="bank or ibc")


class RewardsCollectorConfig(BaseModel):
    """Rewards collector contract settings."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Rewards collector flavour")
    timeout_seconds: int = Field(default=600, ge=1)
    channel_id: str = Field(..., description="IBC channel towards the home chain")
    safety_tax_rate: str = Field(default="0.5")
    revenue_share_tax_rate: str = Field(default="0")
    safety_fund_config: RewardConfig
    revenue_share_config: RewardConfig
    fee_collector_config: RewardConfig
    slippage_tolerance: str = Field(default="0.01")

    @field_validator("safety_tax_rate", "revenue_share_tax_rate", "slippage_tolerance")
    @classmethod
    def validate_rates(cls, v: str) -> str:
        """Validate decimal rates."""
        return _check_decimal(v)


class IncentivesConfig(BaseModel):
    """Incentives contract settings."""

    model_config = ConfigDict(extra="forbid")

    epoch_duration: int = Field(default=604800, ge=1, description="Seconds")
    max_whitelisted_denoms: int = Field(default=10, ge=1, le=255)


class SwapRoute(BaseModel):
    """A swap route registered on the swapper contract."""

    model_config = ConfigDict(extra="forbid")

    denom_in: str
    denom_out: str
    route: dict[str, Any] | list[dict[str, Any]] = Field(
        ..., description="DEX specific route definition"
    )

    @property
    def key(self) -> str:
        """Identity of the route for progress tracking."""
        return f"{self.denom_in}->{self.denom_out}"


class SwapperConfig(BaseModel):
    """Swapper contract settings."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Swapper flavour (astroport, osmosis)")
    routes: list[SwapRoute] = Field(default_factory=list)


class AstroportConfig(BaseModel):
    """Astroport addresses required by the astroport swapper."""

    model_config = ConfigDict(extra="forbid")

    factory: str
    router: str
    incentives: str | None = None


class CreditManagerConfig(BaseModel):
    """Credit manager and account NFT settings."""

    model_config = ConfigDict(extra="forbid")

    max_unlocking_positions: str = Field(default="1")
    max_slippage: str = Field(default="0.2")
    max_value_for_burn: str = Field(default="10000")
    keeper_fee_min: Coin | None = Field(
        default=None, description="Minimum keeper fee for trigger orders"
    )
    perps_liquidation_bonus_ratio: str = Field(default="0.6")
    zapper_contract_name: str = Field(
        default="mars_zapper_osmosis", description="Artifact name of the zapper"
    )

    @field_validator("max_slippage", "perps_liquidation_bonus_ratio")
    @classmethod
    def validate_decimals(cls, v: str) -> str:
        """Validate decimal settings."""
        return _check_decimal(v)

    @field_validator("max_unlocking_positions", "max_value_for_burn")
    @classmethod
    def validate_uints(cls, v: str) -> str:
        """Validate integer settings."""
        return _check_uint(v)


class InterestRateModel(BaseModel):
    """Red bank interest rate model."""

    model_config = ConfigDict(extra="forbid")

    optimal_utilization_rate: str
    base: str
    slope_1: str
    slope_2: str

    @field_validator("optimal_utilization_rate", "base", "slope_1", "slope_2")
    @classmethod
    def validate_decimals(cls, v: str) -> str:
        """Validate decimal rates."""
        return _check_decimal(v)


class LiquidationBonus(BaseModel):
    """Dynamic liquidation bonus curve."""

    model_config = ConfigDict(extra="forbid")

    max_lb: str
    min_lb: str
    slope: str
    starting_lb: str


class AssetConfig(BaseModel):
    """Risk and interest parameters for one asset.

    Attributes:
        denom: Asset denom
        symbol: Human readable symbol
        max_loan_to_value: Maximum LTV
        liquidation_threshold: LTV above which positions are liquidatable
        liquidation_bonus: Liquidation bonus curve
        protocol_liquidation_fee: Share of the bonus kept by the protocol
        deposit_cap: Maximum total deposits
        reserve_factor: Share of interest kept by the protocol
        close_factor: Share of debt that can be liquidated at once
        interest_rate_model: Red bank interest rate model
        whitelisted: Whether credit accounts may hold the asset
        borrow_enabled: Whether the red bank allows borrowing
        deposit_enabled: Whether the red bank allows deposits
    """

    model_config = ConfigDict(extra="forbid")

    denom: str
    symbol: str
    max_loan_to_value: str
    liquidation_threshold: str
    liquidation_bonus: LiquidationBonus
    protocol_liquidation_fee: str
    deposit_cap: str
    reserve_factor: str
    close_factor: str = Field(default="0.9")
    interest_rate_model: InterestRateModel
    whitelisted: bool = True
    borrow_enabled: bool = True
    deposit_enabled: bool = True

    @field_validator(
        "max_loan_to_value",
        "liquidation_threshold",
        "protocol_liquidation_fee",
        "reserve_factor",
        "close_factor",
    )
    @classmethod
    def validate_decimals(cls, v: str) -> str:
        """Validate decimal parameters."""
        return _check_decimal(v)

    @field_validator("deposit_cap")
    @classmethod
    def validate_deposit_cap(cls, v: str) -> str:
        """Validate the deposit cap amount."""
        return _check_uint(v)

    @model_validator(mode="after")
    def validate_ltv_below_threshold(self) -> "AssetConfig":
        """Max LTV must stay below the liquidation threshold."""
        if float(self.max_loan_to_value) >= float(self.liquidation_threshold):
            raise ValueError(
                f"max_loan_to_value ({self.max_loan_to_value}) must be lower than "
                f"liquidation_threshold ({self.liquidation_threshold})"
            )
        return self


class VaultConfig(BaseModel):
    """A vault whitelisted in the params contract."""

    model_config = ConfigDict(extra="forbid")

    symbol: str
    addr: str
    deposit_cap: Coin
    max_loan_to_value: str
    liquidation_threshold: str
    whitelisted: bool = True
    hls: dict[str, Any] | None = None


class PriceSourceConfig(BaseModel):
    """Oracle price source definition for one denom."""

    model_config = ConfigDict(extra="forbid")

    denom: str
    price_source: dict[str, Any] = Field(
        ..., description="Oracle specific price source definition"
    )


class PerpDenomConfig(BaseModel):
    """Parameters for one perps market."""

    model_config = ConfigDict(extra="forbid")

    denom: str
    max_funding_velocity: str
    skew_scale: str
    max_net_oi_value: str
    max_long_oi_value: str
    max_short_oi_value: str
    closing_fee_rate: str
    opening_fee_rate: str
    liquidation_threshold: str
    max_loan_to_value: str
    min_position_value: str
    max_position_value: str | None = None


class PerpsConfig(BaseModel):
    """Perps contract settings."""

    model_config = ConfigDict(extra="forbid")

    base_denom: str
    cooldown_period: int = Field(default=300, ge=0)
    max_positions: int = Field(default=4, ge=1)
    protocol_fee_rate: str = Field(default="0")
    target_collaterization_ratio: str = Field(default="1.2")
    deleverage_enabled: bool = True
    vault_withdraw_enabled: bool = True
    max_unlocks: int = Field(default=5, ge=1)
    denoms: list[PerpDenomConfig] = Field(default_factory=list)


class SwapTestParams(BaseModel):
    """Swap performed by the credit account flow."""

    model_config = ConfigDict(extra="forbid")

    amount: str
    slippage: str = "0.01"
    route: dict[str, Any] | list[dict[str, Any]] | None = None


class VaultTestParams(BaseModel):
    """Vault entry and exit performed by the vault flow."""

    model_config = ConfigDict(extra="forbid")

    deposit_amount: str = Field(..., description="Base token amount to deposit")
    withdraw_amount: str = Field(..., description="Vault token amount to exit")

    @field_validator("deposit_amount", "withdraw_amount")
    @classmethod
    def validate_amounts(cls, v: str) -> str:
        """Validate integer amounts."""
        return _check_uint(v)


class ZapTestParams(BaseModel):
    """Liquidity provision used to obtain the vault's base token."""

    model_config = ConfigDict(extra="forbid")

    coins_in: list[Coin] = Field(..., min_length=1)
    slippage: str = "0.05"
    unzap_amount: str | None = Field(
        default=None, description="LP amount withdrawn again after the vault exit"
    )

    @field_validator("unzap_amount")
    @classmethod
    def validate_unzap_amount(cls, v: str | None) -> str | None:
        """Validate the LP amount."""
        return None if v is None else _check_uint(v)


class PerpTestParams(BaseModel):
    """Perp vault deposit and position round trip."""

    model_config = ConfigDict(extra="forbid")

    denom: str = Field(..., description="Perp market to trade")
    size: str = Field(..., description="Signed order size, negative for short")
    margin_amount: str = Field(..., description="Base denom deposited as margin")
    vault_deposit_amount: str = Field(..., description="Perp vault deposit")

    @field_validator("size")
    @classmethod
    def validate_size(cls, v: str) -> str:
        """Validate a non-zero signed integer."""
        if not re.match(r"^-?\d+$", v) or int(v) == 0:
            raise ValueError(f"Invalid order size: {v!r}")
        return v

    @field_validator("margin_amount", "vault_deposit_amount")
    @classmethod
    def validate_amounts(cls, v: str) -> str:
        """Validate integer amounts."""
        return _check_uint(v)


class TestActions(BaseModel):
    """Amounts used by the validation flows."""

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    secondary_denom: str
    deposit_amount: str
    lend_amount: str
    borrow_amount: str
    repay_amount: str
    reclaim_amount: str
    withdraw_amount: str
    swap: SwapTestParams
    vault: VaultTestParams | None = None
    zap: ZapTestParams | None = None
    perp: PerpTestParams | None = None

    @field_validator(
        "deposit_amount",
        "lend_amount",
        "borrow_amount",
        "repay_amount",
        "reclaim_amount",
        "withdraw_amount",
    )
    @classmethod
    def validate_amounts(cls, v: str) -> str:
        """Validate integer amounts."""
        return _check_uint(v)


class DeploymentConfig(BaseModel):
    """Main deployment configuration model.

    Attributes:
        label: Deployment role label, part of the persisted state key
        chain: Chain connection settings
        deployer_address: Address of the signing key
        artifacts_dir: Directory holding the compiled wasm artifacts
        state_dir: Directory holding persisted progress files
        min_deployer_balance: Base denom amount required before starting
        duality_swapper: Optional second swapper used by the credit manager
        multisig_addr: If set, ownership of every contract moves here at the end
        run_tests: Run validation flows after the deployment
    """

    model_config = ConfigDict(extra="forbid")

    label: str = Field(default="deployer-owner", description="Deployment label")
    chain: ChainConfig
    deployer_address: str = Field(..., description="Deployer (sender) address")
    artifacts_dir: Path = Field(default=Path("artifacts"))
    state_dir: Path = Field(default=Path(".cwdeploy"))
    min_deployer_balance: str = Field(default="0")
    safety_fund_addr: str
    fee_collector_addr: str
    protocol_admin_addr: str
    multisig_addr: str | None = None
    oracle: OracleConfig
    rewards_collector: RewardsCollectorConfig
    incentives: IncentivesConfig = Field(default_factory=IncentivesConfig)
    swapper: SwapperConfig
    duality_swapper: SwapperConfig | None = None
    astroport: AstroportConfig | None = None
    credit_manager: CreditManagerConfig = Field(default_factory=CreditManagerConfig)
    max_perp_params: int = Field(default=40, ge=0, le=255)
    assets: list[AssetConfig] = Field(default_factory=list)
    vaults: list[VaultConfig] = Field(default_factory=list)
    oracle_configs: list[PriceSourceConfig] = Field(default_factory=list)
    perps: PerpsConfig | None = None
    run_tests: bool = False
    test_actions: TestActions | None = None

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        """Labels become part of file names."""
        if not LABEL_PATTERN.match(v):
            raise ValueError(
                f"Invalid label: {v}. Use lowercase letters, numbers, '.', '_', '-'"
            )
        return v

    @field_validator("min_deployer_balance")
    @classmethod
    def validate_min_balance(cls, v: str) -> str:
        """Validate the minimum balance amount."""
        return _check_uint(v)

    @model_validator(mode="after")
    def validate_cross_references(self) -> "DeploymentConfig":
        """Check settings that depend on each other."""
        if self.swapper.name == "astroport" and self.astroport is None:
            raise ValueError(
                "astroport configuration is required for astroport swapper"
            )
        if self.run_tests and self.test_actions is None:
            raise ValueError("test_actions are required when run_tests is enabled")
        actions = self.test_actions
        if actions is not None and actions.vault is not None and not self.vaults:
            raise ValueError("test_actions.vault needs at least one configured vault")
        if actions is not None and actions.perp is not None and self.perps is None:
            raise ValueError("test_actions.perp needs a perps configuration")

        checks = {
            "asset denoms": [asset.denom for asset in self.assets],
            "oracle price source denoms": [s.denom for s in self.oracle_configs],
            "swapper routes": [route.key for route in self.swapper.routes],
            "vault addresses": [vault.addr for vault in self.vaults],
        }
        if self.duality_swapper is not None:
            checks["duality swapper routes"] = [
                route.key for route in self.duality_swapper.routes
            ]
        if self.perps is not None:
            checks["perp denoms"] = [perp.denom for perp in self.perps.denoms]

        for what, values in checks.items():
            duplicates = sorted({v for v in values if values.count(v) > 1})
            if duplicates:
                raise ValueError(f"Duplicate {what}: {', '.join(duplicates)}")
        return self
