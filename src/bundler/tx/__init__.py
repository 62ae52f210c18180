"""
Transaction construction module.

Handles fee pricing, normalization and signing of bundle transactions.
"""

from bundler.tx.fees import FeeOracle, FeeQuote
from bundler.tx.signer import BundleSigner, NonceTracker
from bundler.tx.wrapper import TransactionWrapper

__all__ = [
    "FeeOracle",
    "FeeQuote",
    "BundleSigner",
    "NonceTracker",
    "TransactionWrapper",
]
