"""
Configuration management for the relay bundler.

Supports configuration via environment variables and .env files.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from bundler.core.transaction import FeeModel

GWEI = 10 ** 9

MAINNET_CHAIN_ID = 1
SEPOLIA_CHAIN_ID = 11155111

RELAY_URLS = {
    MAINNET_CHAIN_ID: "https://relay.flashbots.net",
    SEPOLIA_CHAIN_ID: "https://relay-sepolia.flashbots.net",
}


def default_relay_url(chain_id: Optional[int]) -> str:
    """Get the relay endpoint for a chain, falling back to mainnet."""
    return RELAY_URLS.get(chain_id, RELAY_URLS[MAINNET_CHAIN_ID])


class BundlerConfig(BaseSettings):
    """
    Configuration settings for the relay bundler.

    All settings can be configured via environment variables with the BUNDLER_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUNDLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Network settings
    chain_id: Optional[int] = Field(
        default=None,
        description="Chain id of the target network (1 = mainnet, 11155111 = sepolia)"
    )
    rpc_url: Optional[str] = Field(
        default=None,
        description="HTTP JSON-RPC endpoint of an Ethereum node"
    )
    ws_url: Optional[str] = Field(
        default=None,
        description="WebSocket endpoint for newHeads subscriptions (polling is used if unset)"
    )

    # Relay settings
    relay_url: Optional[str] = Field(
        default=None,
        description="Bundle relay endpoint (defaults to the Flashbots relay of the chain)"
    )
    relay_network: Optional[str] = Field(
        default=None,
        description="Relay network name, used in log output only"
    )

    # Wallet settings
    sponsor_private_key: Optional[str] = Field(
        default=None,
        description="Private key of the funding (sponsor) wallet"
    )
    executor_private_key: Optional[str] = Field(
        default=None,
        description="Private key of the executing (deployer) wallet"
    )
    auth_private_key: Optional[str] = Field(
        default=None,
        description="Relay reputation key; a random one is generated if unset"
    )

    # Submission parameters
    interval_to_future_block: int = Field(
        default=2,
        ge=1,
        description="Blocks ahead of the observed head that each submission targets"
    )
    priority_fee_gwei: int = Field(
        default=31,
        ge=0,
        description="Priority fee added on top of the base fee"
    )
    fee_model: FeeModel = Field(
        default=FeeModel.EIP1559,
        description="Fee fields attached to bundle transactions"
    )

    # Timeouts
    rpc_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for each node RPC call"
    )
    relay_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for each relay call"
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Block polling interval when no WebSocket endpoint is set"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @property
    def priority_fee_wei(self) -> int:
        return self.priority_fee_gwei * GWEI

    @property
    def resolved_relay_url(self) -> str:
        """Get the configured relay URL or the default for the chain."""
        return self.relay_url or default_relay_url(self.chain_id)


# Global config instance, used only at the CLI boundary
_config: Optional[BundlerConfig] = None


def get_config() -> BundlerConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = BundlerConfig()
    return _config


def set_config(config: BundlerConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
