"""
web3.py adapter for node integration.

Provides blockchain access via an Ethereum JSON-RPC node using AsyncWeb3.
"""

import asyncio
from typing import Any, Awaitable, Dict, Optional

import aiohttp
import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from bundler.chain.interface import BlockHeader, BlockTag, ChainInterface
from bundler.core.errors import GasEstimationError, NetworkError

logger = structlog.get_logger(__name__)


class Web3ChainAdapter(ChainInterface):
    """
    AsyncWeb3 adapter.

    Implements the ChainInterface over HTTP JSON-RPC. Every call is bounded
    by ``timeout_seconds``; timeouts and transport failures surface as
    NetworkError.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout_seconds: float = 15.0,
        web3: Optional[AsyncWeb3] = None,
    ):
        """
        Initialize the adapter.

        Args:
            rpc_url: HTTP JSON-RPC endpoint
            timeout_seconds: Per-call timeout
            web3: Pre-built AsyncWeb3 instance (takes precedence over rpc_url)
        """
        if web3 is None and not rpc_url:
            raise ValueError("Either rpc_url or web3 must be provided")

        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self._w3 = web3
        self._chain_id: Optional[int] = None

    @property
    def w3(self) -> AsyncWeb3:
        if self._w3 is None:
            self._w3 = AsyncWeb3(
                AsyncHTTPProvider(
                    self.rpc_url,
                    request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.timeout_seconds)},
                )
            )
        return self._w3

    async def connect(self) -> None:
        """Check that the node answers and cache its chain id."""
        connected = await self._call(self.w3.is_connected(), "is_connected")
        if not connected:
            raise NetworkError(f"Node not reachable at {self.rpc_url}")

        self._chain_id = await self.get_chain_id()
        logger.info("node_connected", rpc_url=self.rpc_url, chain_id=self._chain_id)

    async def disconnect(self) -> None:
        """Close the provider session."""
        if self._w3 is not None:
            disconnect = getattr(self._w3.provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()
            logger.info("node_disconnected")

    async def _call(self, awaitable: Awaitable, method: str) -> Any:
        """Run one RPC call with the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("rpc_timeout", method=method, timeout=self.timeout_seconds)
            raise NetworkError(f"RPC call {method} timed out after {self.timeout_seconds}s")
        except (aiohttp.ClientError, OSError) as e:
            logger.error("rpc_transport_error", method=method, error=str(e))
            raise NetworkError(f"RPC call {method} failed: {e}")

    async def _query(self, awaitable: Awaitable, method: str) -> Any:
        """Run a read call, mapping node-side errors onto NetworkError."""
        try:
            return await self._call(awaitable, method)
        except Web3Exception as e:
            logger.error("rpc_request_failed", method=method, error=str(e))
            raise NetworkError(f"RPC call {method} rejected: {e}")

    async def get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self._query(self.w3.eth.chain_id, "eth_chainId"))
        return self._chain_id

    async def get_block(self, tag: BlockTag = "latest") -> BlockHeader:
        block = await self._query(self.w3.eth.get_block(tag), "eth_getBlockByNumber")
        if block is None:
            raise NetworkError(f"Block {tag} not found")

        return BlockHeader(
            number=block["number"],
            base_fee_per_gas=block.get("baseFeePerGas"),
            timestamp=block.get("timestamp"),
            transaction_hashes=[Web3.to_hex(h) for h in block.get("transactions", [])],
        )

    async def get_block_number(self) -> int:
        return int(await self._query(self.w3.eth.block_number, "eth_blockNumber"))

    async def get_transaction_count(self, address: str, tag: BlockTag = "pending") -> int:
        return int(await self._query(
            self.w3.eth.get_transaction_count(Web3.to_checksum_address(address), tag),
            "eth_getTransactionCount",
        ))

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        try:
            return int(await self._call(self.w3.eth.estimate_gas(tx), "eth_estimateGas"))
        except (Web3Exception, ValueError) as e:
            raise GasEstimationError(f"Gas estimation failed: {e}")

    async def get_balance(self, address: str) -> int:
        return int(await self._query(
            self.w3.eth.get_balance(Web3.to_checksum_address(address)),
            "eth_getBalance",
        ))
