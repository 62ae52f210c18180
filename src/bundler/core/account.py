"""
Account identity model.

An identity is a signing key plus its derived address. It signs bundle
transactions and, for the relay, authenticates bundle requests.
"""

import re
from typing import Any, Dict, Optional

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

logger = structlog.get_logger(__name__)

_PRIVATE_KEY_PATTERN = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def is_valid_private_key(value: Optional[str]) -> bool:
    """Check that a value looks like a 32-byte hex private key."""
    return bool(value) and bool(_PRIVATE_KEY_PATTERN.match(value.strip()))


class AccountIdentity:
    """
    A signing key and its checksum address.

    Identities compare and hash by address. The private key never shows up
    in ``repr`` or log output.
    """

    def __init__(self, private_key: str, label: Optional[str] = None):
        """
        Create an identity from a hex private key.

        Args:
            private_key: 32-byte private key as hex, with or without 0x prefix
            label: Optional human-readable role, e.g. "sponsor" or "sniper-1"
        """
        if not is_valid_private_key(private_key):
            raise ValueError("Private key must be 32 bytes of hex")

        self._account = Account.from_key(private_key.strip())
        self.label = label

    @classmethod
    def from_key(cls, private_key: str, label: Optional[str] = None) -> "AccountIdentity":
        """Create an identity from an existing private key."""
        return cls(private_key, label=label)

    @classmethod
    def generate(cls, label: Optional[str] = None) -> "AccountIdentity":
        """
        Generate a fresh random identity.

        Used for the anonymous relay-auth identity when none is configured.
        """
        account = Account.create()
        identity = cls(Web3.to_hex(account.key), label=label)
        logger.info("identity_generated", address=identity.address, label=label)
        return identity

    @property
    def address(self) -> str:
        """Checksum address derived from the key."""
        return self._account.address

    @property
    def private_key(self) -> str:
        """Private key as 0x-prefixed hex."""
        return Web3.to_hex(self._account.key)

    def sign_transaction(self, tx: Dict[str, Any]):
        """Sign a transaction dict, returning the eth_account signed transaction."""
        return self._account.sign_transaction(tx)

    def sign_text(self, text: str) -> str:
        """Sign a text message (EIP-191 personal_sign), returning 0x-prefixed hex."""
        signed = self._account.sign_message(encode_defunct(text=text))
        return Web3.to_hex(signed.signature)

    def __eq__(self, other):
        if isinstance(other, AccountIdentity):
            return self.address == other.address
        return False

    def __hash__(self):
        return hash(self.address)

    def __repr__(self) -> str:
        if self.label:
            return f"AccountIdentity({self.label}, {self.address})"
        return f"AccountIdentity({self.address})"
