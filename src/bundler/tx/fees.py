"""
Fee Oracle - derives fee fields from current network conditions.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from bundler.chain.interface import ChainInterface
from bundler.core.errors import NetworkError
from bundler.core.transaction import FeeModel

logger = structlog.get_logger(__name__)

GWEI = 10 ** 9
DEFAULT_PRIORITY_FEE = 31 * GWEI


@dataclass(frozen=True)
class FeeQuote:
    """
    Fee fields for one bundle.

    Exactly one model is populated: ``gas_price`` for legacy, the
    max-fee / priority-fee pair for EIP-1559.
    """

    base_fee_per_gas: int
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def model(self) -> FeeModel:
        return FeeModel.LEGACY if self.gas_price is not None else FeeModel.EIP1559


class FeeOracle:
    """
    Prices bundle transactions from the latest block's base fee.

    The priority fee is a fixed tip. Legacy price is base fee plus tip;
    the EIP-1559 fee cap is twice the base fee plus tip, leaving room for
    base fee growth over the blocks the bundle is retried for.
    """

    def __init__(
        self,
        chain: ChainInterface,
        priority_fee_wei: int = DEFAULT_PRIORITY_FEE,
        fee_model: FeeModel = FeeModel.EIP1559,
    ):
        self.chain = chain
        self.priority_fee_wei = priority_fee_wei
        self.fee_model = fee_model
        self._last_base_fee: Optional[int] = None

    @property
    def last_base_fee(self) -> Optional[int]:
        return self._last_base_fee

    async def get_fees(self) -> FeeQuote:
        """
        Quote fees from the latest block.

        Makes a single block read. If it fails, the last observed base fee
        is used instead.

        Raises:
            NetworkError: If the block read fails and no base fee was seen before
        """
        try:
            block = await self.chain.get_block("latest")
            base_fee = block.base_fee_per_gas or 0
            self._last_base_fee = base_fee
        except NetworkError as e:
            if self._last_base_fee is None:
                raise
            base_fee = self._last_base_fee
            logger.warning("fee_query_failed_using_last_base_fee", base_fee=base_fee, error=str(e))

        quote = self.quote(base_fee)
        logger.debug(
            "fees_quoted",
            model=quote.model.value,
            base_fee=base_fee,
            priority_fee=self.priority_fee_wei,
        )
        return quote

    def quote(self, base_fee: int) -> FeeQuote:
        """Build a quote for a given base fee."""
        if self.fee_model == FeeModel.LEGACY:
            return FeeQuote(
                base_fee_per_gas=base_fee,
                gas_price=base_fee + self.priority_fee_wei,
            )
        return FeeQuote(
            base_fee_per_gas=base_fee,
            max_fee_per_gas=2 * base_fee + self.priority_fee_wei,
            max_priority_fee_per_gas=self.priority_fee_wei,
        )
