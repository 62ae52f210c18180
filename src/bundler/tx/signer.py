"""
Bundle Signer - assigns nonces and signs bundle transactions.

Each entry is signed by its own identity. Nonces are tracked per account
across the bundle so several transactions from one key execute in order.
"""

from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from web3 import Web3

from bundler.chain.interface import ChainInterface
from bundler.core.account import AccountIdentity
from bundler.core.bundle import SignedBundle, SignedTransaction
from bundler.core.errors import InvalidEntry
from bundler.core.transaction import TransactionRequest

logger = structlog.get_logger(__name__)


class NonceTracker:
    """
    Hands out consecutive nonces per account.

    The starting nonce of each account is read once from the node's
    pending state.
    """

    def __init__(self, chain: ChainInterface):
        self.chain = chain
        self._next: Dict[str, int] = {}

    async def next_nonce(self, address: str) -> int:
        """Reserve the next nonce for an account."""
        if address not in self._next:
            self._next[address] = await self.chain.get_transaction_count(address, "pending")
        nonce = self._next[address]
        self._next[address] = nonce + 1
        return nonce

    def observe(self, address: str, nonce: int) -> None:
        """Record an explicitly chosen nonce so later entries follow it."""
        self._next[address] = nonce + 1

    def peek(self, address: str) -> Optional[int]:
        return self._next.get(address)


class BundleSigner:
    """
    Signs the transactions of a bundle with their entries' identities.
    """

    def __init__(self, chain: ChainInterface):
        """
        Initialize the signer.

        Args:
            chain: Node used to read starting nonces
        """
        self.chain = chain

    async def sign(
        self,
        entries: Sequence[Tuple[AccountIdentity, TransactionRequest]],
        bundle_id: Optional[str] = None,
    ) -> SignedBundle:
        """
        Assign nonces and sign every transaction.

        Args:
            entries: (signer, request) pairs in bundle order
            bundle_id: Identifier of the source bundle, for logging

        Returns:
            The signed bundle in the same order

        Raises:
            InvalidEntry: If nonces of one signer would not strictly increase
        """
        tracker = NonceTracker(self.chain)
        last_nonce: Dict[str, int] = {}
        signed: List[SignedTransaction] = []

        for position, (identity, request) in enumerate(entries):
            address = identity.address

            if request.nonce is None:
                request.nonce = await tracker.next_nonce(address)
            else:
                tracker.observe(address, request.nonce)

            if address in last_nonce and request.nonce <= last_nonce[address]:
                raise InvalidEntry(
                    f"Entry {position}: nonce {request.nonce} for {address} does not follow {last_nonce[address]}"
                )
            last_nonce[address] = request.nonce

            result = identity.sign_transaction(request.to_tx_dict())
            signed.append(SignedTransaction(
                raw=Web3.to_hex(result.raw_transaction),
                tx_hash=Web3.to_hex(result.hash),
                sender=address,
                nonce=request.nonce,
            ))
            logger.debug(
                "transaction_signed",
                position=position,
                signer=address,
                nonce=request.nonce,
                tx_hash=signed[-1].tx_hash[:18] + "...",
            )

        logger.info("bundle_signed", bundle_id=bundle_id, size=len(signed), signers=len(last_nonce))
        return SignedBundle(transactions=tuple(signed), bundle_id=bundle_id)
