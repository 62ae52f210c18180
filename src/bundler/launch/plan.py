"""
Launch plan.

The launch plan is a JSON document read once at start. It names the token,
router and WETH addresses, the liquidity and approval amounts, and the
sniper wallets with their buy amounts.
"""

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from web3 import Web3

from bundler.core.account import AccountIdentity, is_valid_private_key

UNISWAP_V2_ROUTER_MAINNET = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"

# The first addLiquidityETH also deploys the pair contract.
DEFAULT_LIQUIDITY_GAS_LIMIT = 5_000_000


def _check_amount(value: str) -> str:
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Not a decimal amount: {value!r}")
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {value!r}")
    return value


def to_base_units(amount: str, decimals: int = 18) -> int:
    """Convert a decimal amount string to integer base units."""
    return int(Decimal(amount).scaleb(decimals))


class LaunchPlan(BaseModel):
    """
    Addresses, amounts and wallets for one launch bundle.

    Amounts are decimal strings in whole tokens / ether. Sniper wallets are
    private keys or ``$NAME`` references resolved from an environment
    mapping.
    """

    token_address: str
    router_address: str = UNISWAP_V2_ROUTER_MAINNET
    weth_address: str
    token_decimals: int = Field(default=18, ge=0, le=36)

    approval_amount: str
    desired_token_amount: str
    amount_token_min: str = "0"
    amount_eth_min: str = "0"
    liquidity_amount: str
    liquidity_gas_limit: int = Field(default=DEFAULT_LIQUIDITY_GAS_LIMIT, gt=0)

    sniper_wallets: List[str] = Field(default_factory=list)
    desired_buy_amounts: List[str] = Field(default_factory=list)
    min_tokens_out: str = "0"
    required_sniper_balance: Optional[str] = None
    deadline_seconds: int = Field(default=1200, gt=0)

    @field_validator("token_address", "router_address", "weth_address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"Not an address: {value!r}")
        return Web3.to_checksum_address(value)

    @field_validator(
        "approval_amount",
        "desired_token_amount",
        "amount_token_min",
        "amount_eth_min",
        "liquidity_amount",
        "min_tokens_out",
        "required_sniper_balance",
    )
    @classmethod
    def _check_amounts(cls, value: Optional[str]) -> Optional[str]:
        return value if value is None else _check_amount(value)

    @field_validator("desired_buy_amounts")
    @classmethod
    def _check_buy_amounts(cls, values: List[str]) -> List[str]:
        return [_check_amount(v) for v in values]

    @model_validator(mode="after")
    def _check_wallet_amounts(self) -> "LaunchPlan":
        if len(self.sniper_wallets) != len(self.desired_buy_amounts):
            raise ValueError(
                f"{len(self.sniper_wallets)} sniper wallets but "
                f"{len(self.desired_buy_amounts)} buy amounts"
            )
        return self

    # Amounts in base units

    @property
    def approval_amount_units(self) -> int:
        return to_base_units(self.approval_amount, self.token_decimals)

    @property
    def desired_token_amount_units(self) -> int:
        return to_base_units(self.desired_token_amount, self.token_decimals)

    @property
    def amount_token_min_units(self) -> int:
        return to_base_units(self.amount_token_min, self.token_decimals)

    @property
    def min_tokens_out_units(self) -> int:
        return to_base_units(self.min_tokens_out, self.token_decimals)

    @property
    def amount_eth_min_wei(self) -> int:
        return Web3.to_wei(Decimal(self.amount_eth_min), "ether")

    @property
    def liquidity_amount_wei(self) -> int:
        return Web3.to_wei(Decimal(self.liquidity_amount), "ether")

    @property
    def buy_amounts_wei(self) -> List[int]:
        return [Web3.to_wei(Decimal(a), "ether") for a in self.desired_buy_amounts]

    @property
    def required_sniper_balance_wei(self) -> Optional[int]:
        if self.required_sniper_balance is None:
            return None
        return Web3.to_wei(Decimal(self.required_sniper_balance), "ether")

    def sniper_identities(self, env: Optional[Mapping[str, str]] = None) -> List[AccountIdentity]:
        """
        Resolve the sniper wallets into identities.

        Args:
            env: Mapping used to resolve ``$NAME`` references

        Raises:
            ValueError: If a reference is unset or a key is malformed
        """
        env = env or {}
        identities = []
        for position, reference in enumerate(self.sniper_wallets):
            key = reference
            if reference.startswith("$"):
                key = env.get(reference[1:])
                if not key:
                    raise ValueError(f"Sniper wallet {position}: {reference} is not set")
            if not is_valid_private_key(key):
                raise ValueError(f"Sniper wallet {position}: invalid private key")
            identities.append(AccountIdentity.from_key(key, label=f"sniper-{position + 1}"))
        return identities


def load_plan(path: str) -> LaunchPlan:
    """
    Load a launch plan from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If the plan is malformed
    """
    plan_path = Path(path)
    if not plan_path.exists():
        raise FileNotFoundError(f"Launch plan not found: {path}")

    with plan_path.open("r", encoding="utf-8") as f:
        return LaunchPlan.model_validate(json.load(f))
