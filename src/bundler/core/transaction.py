"""
Transaction models.

A RawCall is an un-normalized call skeleton as produced by contract call
population. A TransactionRequest is the chain-submittable form carrying
chain id, gas limit and exactly one fee model.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from web3 import Web3

from bundler.core.errors import InvalidCall


class FeeModel(str, Enum):
    """Transaction fee models."""
    LEGACY = "legacy"       # gasPrice
    EIP1559 = "eip1559"     # maxFeePerGas + maxPriorityFeePerGas


def _as_int(value: Any) -> Optional[int]:
    """Normalize an int-like value (int or hex string) to int."""
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


@dataclass
class RawCall:
    """
    A call to be executed inside a bundle, before normalization.

    Attributes:
        to: Destination address (None for contract creation)
        value: Wei sent with the call
        data: Hex-encoded call data
        gas_limit: Explicit gas limit override
        nonce: Explicit nonce override
        from_address: Sender used for gas estimation, if different from the signer
        gas_price: Explicit legacy gas price
        max_fee_per_gas: Explicit EIP-1559 fee cap
        max_priority_fee_per_gas: Explicit EIP-1559 tip
    """

    to: Optional[str] = None
    value: int = 0
    data: Optional[str] = None
    gas_limit: Optional[int] = None
    nonce: Optional[int] = None
    from_address: Optional[str] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @classmethod
    def from_dict(cls, tx: Dict[str, Any]) -> "RawCall":
        """
        Create a RawCall from a web3-style transaction dict.

        Accepts the camelCase keys produced by ``build_transaction`` and
        friends (``gas``, ``gasPrice``, ``maxFeePerGas``...).
        """
        return cls(
            to=tx.get("to"),
            value=_as_int(tx.get("value")) or 0,
            data=tx.get("data") or tx.get("input"),
            gas_limit=_as_int(tx.get("gas", tx.get("gasLimit"))),
            nonce=_as_int(tx.get("nonce")),
            from_address=tx.get("from"),
            gas_price=_as_int(tx.get("gasPrice")),
            max_fee_per_gas=_as_int(tx.get("maxFeePerGas")),
            max_priority_fee_per_gas=_as_int(tx.get("maxPriorityFeePerGas")),
        )

    @property
    def has_data(self) -> bool:
        """Check if the call carries non-empty call data."""
        return bool(self.data) and self.data not in ("0x", "0X")

    @property
    def is_plain_transfer(self) -> bool:
        """A plain value transfer: a destination and no call data."""
        return self.to is not None and not self.has_data

    def estimation_dict(self, sender: str) -> Dict[str, Any]:
        """Build the dict passed to ``eth_estimateGas``."""
        tx: Dict[str, Any] = {
            "from": self.from_address or sender,
            "value": self.value,
        }
        if self.to is not None:
            tx["to"] = Web3.to_checksum_address(self.to)
        if self.has_data:
            tx["data"] = self.data
        return tx


@dataclass
class TransactionRequest:
    """
    A chain-submittable transaction.

    Invariant: exactly one fee model is populated before signing.
    """

    chain_id: int
    gas_limit: int
    to: Optional[str] = None
    value: int = 0
    data: Optional[str] = None
    nonce: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    @property
    def fee_model(self) -> Optional[FeeModel]:
        """The populated fee model, or None if none or both are set."""
        legacy = self.gas_price is not None
        dynamic = self.max_fee_per_gas is not None or self.max_priority_fee_per_gas is not None
        if legacy and not dynamic:
            return FeeModel.LEGACY
        if dynamic and not legacy:
            return FeeModel.EIP1559
        return None

    def validate_fee_model(self) -> None:
        """
        Check the single-fee-model invariant.

        Raises:
            InvalidCall: If no fee model or both fee models are populated
        """
        model = self.fee_model
        if model is None:
            raise InvalidCall("Transaction must carry exactly one fee model (gasPrice or maxFeePerGas)")
        if model == FeeModel.EIP1559 and (
            self.max_fee_per_gas is None or self.max_priority_fee_per_gas is None
        ):
            raise InvalidCall("EIP-1559 transaction needs both maxFeePerGas and maxPriorityFeePerGas")

    @property
    def max_cost(self) -> int:
        """Worst-case wei spent by this transaction (value plus gas at the fee cap)."""
        price = self.gas_price if self.gas_price is not None else (self.max_fee_per_gas or 0)
        return self.value + self.gas_limit * price

    def to_tx_dict(self) -> Dict[str, Any]:
        """
        Build the dict accepted by ``eth_account`` for signing.

        Raises:
            InvalidCall: If the fee model invariant does not hold or the nonce is unset
        """
        self.validate_fee_model()
        if self.nonce is None:
            raise InvalidCall("Nonce must be assigned before signing")

        tx: Dict[str, Any] = {
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "gas": self.gas_limit,
            "value": self.value,
            "data": Web3.to_bytes(hexstr=self.data) if self.data else b"",
        }
        if self.to is not None:
            tx["to"] = Web3.to_checksum_address(self.to)

        if self.fee_model == FeeModel.LEGACY:
            tx["gasPrice"] = self.gas_price
        else:
            tx["type"] = 2
            tx["maxFeePerGas"] = self.max_fee_per_gas
            tx["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas
        return tx
