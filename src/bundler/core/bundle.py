"""
Bundle model.

A bundle is an ordered set of transactions included atomically in one
target block. Entries execute strictly in sequence and an earlier failing
entry voids the later ones.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import structlog

from bundler.core.account import AccountIdentity
from bundler.core.errors import EmptyBundle, InvalidEntry
from bundler.core.transaction import RawCall

logger = structlog.get_logger(__name__)

TransactionLike = Union[RawCall, Dict[str, Any]]


@dataclass(frozen=True)
class BundleEntry:
    """
    One transaction of a bundle together with the identity that signs it.

    Attributes:
        signer: Identity whose key signs the transaction
        transaction: The raw call to execute
    """

    signer: AccountIdentity
    transaction: RawCall

    @classmethod
    def create(
        cls,
        signer: Optional[AccountIdentity],
        transaction: Optional[TransactionLike],
    ) -> "BundleEntry":
        """
        Create an entry, coercing web3-style dicts into RawCall.

        Raises:
            InvalidEntry: If the signer or the transaction is missing
        """
        if signer is None:
            raise InvalidEntry("Bundle entry requires a signer")
        if transaction is None:
            raise InvalidEntry("Bundle entry requires a transaction")
        if not isinstance(signer, AccountIdentity):
            raise InvalidEntry(f"Signer must be an AccountIdentity, got {type(signer).__name__}")

        if isinstance(transaction, dict):
            transaction = RawCall.from_dict(transaction)
        elif not isinstance(transaction, RawCall):
            raise InvalidEntry(f"Unsupported transaction type: {type(transaction).__name__}")

        return cls(signer=signer, transaction=transaction)


@dataclass(frozen=True)
class Bundle:
    """
    A finalized, immutable bundle.

    Attributes:
        entries: Entries in execution order
        bundle_id: Local identifier used in log output
        created_at: When the bundle was finalized
    """

    entries: Tuple[BundleEntry, ...]
    bundle_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        if not self.entries:
            raise EmptyBundle()

    @property
    def size(self) -> int:
        """Number of transactions in the bundle."""
        return len(self.entries)

    @property
    def signers(self) -> List[AccountIdentity]:
        """Distinct signers, in order of first appearance."""
        seen: List[AccountIdentity] = []
        for entry in self.entries:
            if entry.signer not in seen:
                seen.append(entry.signer)
        return seen

    @property
    def total_value(self) -> int:
        """Total wei transferred by all entries."""
        return sum(entry.transaction.value for entry in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __repr__(self) -> str:
        return f"Bundle(id={self.bundle_id[:8]}..., size={self.size})"


class BundleAssembler:
    """
    Append-only builder for an ordered bundle.

    Entries may be appended one at a time or in batches; ordering is always
    the order of appends. Nothing can be removed once appended.
    """

    def __init__(self):
        self._entries: List[BundleEntry] = []

    def add_entry(
        self,
        signer: Optional[AccountIdentity],
        transaction: Optional[TransactionLike],
    ) -> "BundleAssembler":
        """
        Append one entry.

        Args:
            signer: Identity signing the transaction
            transaction: RawCall or web3-style transaction dict

        Returns:
            The assembler, for chaining

        Raises:
            InvalidEntry: If signer or transaction is missing
        """
        entry = BundleEntry.create(signer, transaction)
        self._entries.append(entry)
        logger.debug(
            "bundle_entry_added",
            position=len(self._entries) - 1,
            signer=signer.address,
            to=entry.transaction.to,
        )
        return self

    def add_entries(
        self,
        entries: Iterable[Union[BundleEntry, Tuple[AccountIdentity, TransactionLike]]],
    ) -> "BundleAssembler":
        """
        Append several entries in the given order.

        Equivalent to calling ``add_entry`` for each item. The batch is
        validated first so a bad item leaves the assembler unchanged.
        """
        staged: List[BundleEntry] = []
        for item in entries:
            if isinstance(item, BundleEntry):
                staged.append(BundleEntry.create(item.signer, item.transaction))
            else:
                try:
                    signer, transaction = item
                except (TypeError, ValueError):
                    raise InvalidEntry("Entries must be BundleEntry or (signer, transaction) pairs")
                staged.append(BundleEntry.create(signer, transaction))

        self._entries.extend(staged)
        logger.debug("bundle_entries_added", count=len(staged), size=len(self._entries))
        return self

    @property
    def entries(self) -> Tuple[BundleEntry, ...]:
        """Read-only view of the entries appended so far."""
        return tuple(self._entries)

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def finalize(self) -> Bundle:
        """
        Snapshot the entries into an immutable Bundle.

        Raises:
            EmptyBundle: If no entries were appended
            InvalidEntry: If explicit nonces of one signer are not strictly increasing
        """
        if not self._entries:
            raise EmptyBundle()

        _check_explicit_nonces(self._entries)
        bundle = Bundle(entries=tuple(self._entries))
        logger.info("bundle_finalized", bundle_id=bundle.bundle_id[:8] + "...", size=bundle.size)
        return bundle


def _check_explicit_nonces(entries: Iterable[BundleEntry]) -> None:
    """Explicit nonces of the same signer must increase strictly in bundle order."""
    last_nonce: Dict[str, int] = {}
    for position, entry in enumerate(entries):
        nonce = entry.transaction.nonce
        if nonce is None:
            continue
        address = entry.signer.address
        if address in last_nonce and nonce <= last_nonce[address]:
            raise InvalidEntry(
                f"Entry {position}: nonce {nonce} for {address} does not follow {last_nonce[address]}"
            )
        last_nonce[address] = nonce


@dataclass(frozen=True)
class SignedTransaction:
    """A signed bundle transaction."""

    raw: str            # 0x-prefixed RLP
    tx_hash: str        # 0x-prefixed hash
    sender: str
    nonce: int


@dataclass(frozen=True)
class SignedBundle:
    """
    A bundle after nonce assignment and signing.

    Attributes:
        transactions: Signed transactions in execution order
        bundle_id: Identifier of the source bundle
    """

    transactions: Tuple[SignedTransaction, ...]
    bundle_id: Optional[str] = None

    @property
    def raw_transactions(self) -> List[str]:
        return [tx.raw for tx in self.transactions]

    @property
    def tx_hashes(self) -> List[str]:
        return [tx.tx_hash for tx in self.transactions]

    def min_nonce_by_account(self) -> Dict[str, int]:
        """Lowest bundle nonce for each sending account."""
        result: Dict[str, int] = {}
        for tx in self.transactions:
            if tx.sender not in result or tx.nonce < result[tx.sender]:
                result[tx.sender] = tx.nonce
        return result

    def __len__(self) -> int:
        return len(self.transactions)
