"""
Executor factory.

Validates every construction input at once and assembles a ready-to-run
BundleExecutor. No partially configured executor ever exists.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import structlog

from bundler.chain.interface import ChainInterface
from bundler.chain.watcher import BlockSource, NewHeadsBlockWatcher, PollingBlockWatcher
from bundler.config import BundlerConfig, default_relay_url
from bundler.core.account import AccountIdentity, is_valid_private_key
from bundler.core.errors import ValidationError
from bundler.core.transaction import FeeModel
from bundler.engine.executor import BundleExecutor
from bundler.engine.loop import DEFAULT_INTERVAL_TO_FUTURE_BLOCK
from bundler.relay.flashbots import FlashbotsRelay
from bundler.relay.interface import RelayInterface
from bundler.tx.fees import DEFAULT_PRIORITY_FEE, FeeOracle
from bundler.tx.signer import BundleSigner
from bundler.tx.wrapper import TransactionWrapper

logger = structlog.get_logger(__name__)

NOT_PROVIDED = "Not provided"
INVALID_KEY = "Invalid private key"


@dataclass
class ExecutorSettings:
    """
    Construction input for a BundleExecutor.

    Required: network_id, chain, sponsor_private_key, executor_private_key.
    ``relay`` and ``block_source`` are built from the other settings when
    not supplied.
    """

    network_id: Optional[int] = None
    chain: Optional[ChainInterface] = None
    sponsor_private_key: Optional[str] = None
    executor_private_key: Optional[str] = None

    interval_to_future_block: int = DEFAULT_INTERVAL_TO_FUTURE_BLOCK
    priority_fee_wei: int = DEFAULT_PRIORITY_FEE
    fee_model: FeeModel = FeeModel.EIP1559
    relay_url: Optional[str] = None
    relay_network: Optional[str] = None
    auth_private_key: Optional[str] = None
    ws_url: Optional[str] = None
    relay_timeout_seconds: float = 15.0
    poll_interval_seconds: float = 2.0

    relay: Optional[RelayInterface] = None
    block_source: Optional[BlockSource] = None

    @classmethod
    def from_config(cls, config: BundlerConfig, chain: Optional[ChainInterface]) -> "ExecutorSettings":
        """Build settings from the environment configuration and a node handle."""
        return cls(
            network_id=config.chain_id,
            chain=chain,
            sponsor_private_key=config.sponsor_private_key,
            executor_private_key=config.executor_private_key,
            interval_to_future_block=config.interval_to_future_block,
            priority_fee_wei=config.priority_fee_wei,
            fee_model=config.fee_model,
            relay_url=config.relay_url,
            relay_network=config.relay_network,
            auth_private_key=config.auth_private_key,
            ws_url=config.ws_url,
            relay_timeout_seconds=config.relay_timeout_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
        )


def validate_settings(settings: ExecutorSettings) -> Dict[str, str]:
    """
    Check every construction input.

    Returns:
        Mapping of rejected field name to reason; empty when valid
    """
    errors: Dict[str, str] = {}

    if settings.network_id is None:
        errors["network_id"] = NOT_PROVIDED
    elif not isinstance(settings.network_id, int) or isinstance(settings.network_id, bool) or settings.network_id <= 0:
        errors["network_id"] = "Must be a positive integer"

    if settings.chain is None:
        errors["chain"] = NOT_PROVIDED
    elif not isinstance(settings.chain, ChainInterface):
        errors["chain"] = "Must implement ChainInterface"

    for name in ("sponsor_private_key", "executor_private_key"):
        value = getattr(settings, name)
        if not value:
            errors[name] = NOT_PROVIDED
        elif not is_valid_private_key(value):
            errors[name] = INVALID_KEY

    if settings.auth_private_key and not is_valid_private_key(settings.auth_private_key):
        errors["auth_private_key"] = INVALID_KEY

    if not isinstance(settings.interval_to_future_block, int) or settings.interval_to_future_block < 1:
        errors["interval_to_future_block"] = "Must be an integer >= 1"

    if not isinstance(settings.priority_fee_wei, int) or settings.priority_fee_wei < 0:
        errors["priority_fee_wei"] = "Must be a non-negative integer"

    return errors


def build_executor(settings: ExecutorSettings) -> BundleExecutor:
    """
    Validate settings and create an executor.

    Raises:
        ValidationError: Naming every missing or invalid field
    """
    errors = validate_settings(settings)
    if errors:
        logger.error("executor_settings_invalid", fields=list(errors))
        raise ValidationError(errors)

    chain = settings.chain
    sponsor = AccountIdentity.from_key(settings.sponsor_private_key, label="sponsor")
    executor = AccountIdentity.from_key(settings.executor_private_key, label="executor")

    if settings.auth_private_key:
        auth = AccountIdentity.from_key(settings.auth_private_key, label="relay-auth")
        auth_generated = False
    else:
        auth = AccountIdentity.generate(label="relay-auth")
        auth_generated = True

    relay = settings.relay or FlashbotsRelay(
        auth_identity=auth,
        chain=chain,
        relay_url=settings.relay_url or default_relay_url(settings.network_id),
        timeout_seconds=settings.relay_timeout_seconds,
    )

    if settings.block_source is not None:
        block_source = settings.block_source
    elif settings.ws_url:
        block_source = NewHeadsBlockWatcher(settings.ws_url)
    else:
        block_source = PollingBlockWatcher(chain, settings.poll_interval_seconds)

    logger.info(
        "executor_built",
        network_id=settings.network_id,
        relay_network=settings.relay_network,
        sponsor=sponsor.address,
        executor=executor.address,
        auth_address=auth.address,
        auth_generated=auth_generated,
    )

    return BundleExecutor(
        chain_id=settings.network_id,
        chain=chain,
        relay=relay,
        block_source=block_source,
        sponsor=sponsor,
        executor=executor,
        auth=auth,
        auth_generated=auth_generated,
        interval_to_future_block=settings.interval_to_future_block,
        fee_oracle=FeeOracle(chain, settings.priority_fee_wei, settings.fee_model),
        wrapper=TransactionWrapper(settings.network_id),
        signer=BundleSigner(chain),
    )
