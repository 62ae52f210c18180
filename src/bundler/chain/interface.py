"""
Abstract interface for Ethereum node access.

Defines the contract for blockchain reads that the bundler needs. Node
adapters implement it; tests replace it with an in-memory chain.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class BlockHeader:
    """Block information used for pricing and inclusion checks."""
    number: int
    base_fee_per_gas: Optional[int] = None
    timestamp: Optional[int] = None
    transaction_hashes: List[str] = field(default_factory=list)


BlockTag = Union[int, str]


class ChainInterface(ABC):
    """
    Abstract interface for Ethereum node access.

    This interface defines the blockchain operations needed by the bundler:
    - Block and fee reads
    - Account nonce and balance queries
    - Gas estimation
    - Inclusion checks
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the node.

        Raises:
            NetworkError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the node."""
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Get the chain id reported by the node."""
        pass

    @abstractmethod
    async def get_block(self, tag: BlockTag = "latest") -> BlockHeader:
        """
        Get a block by number or tag.

        Args:
            tag: Block number or tag ("latest", "pending")

        Returns:
            Header of the block, with its transaction hashes
        """
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        """Get the current head block number."""
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str, tag: BlockTag = "pending") -> int:
        """
        Get the nonce of an account.

        Args:
            address: Account address
            tag: Block tag, "pending" to include mempool transactions

        Returns:
            Number of transactions sent from the account
        """
        pass

    @abstractmethod
    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """
        Estimate gas for a call.

        Raises:
            GasEstimationError: If the node reports the call would revert
        """
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Get the wei balance of an account."""
        pass

    async def get_block_transaction_hashes(self, block_number: int) -> List[str]:
        """
        Get the lower-cased transaction hashes of a block.

        Args:
            block_number: Block to inspect

        Returns:
            Transaction hashes included in the block
        """
        block = await self.get_block(block_number)
        return [h.lower() for h in block.transaction_hashes]
