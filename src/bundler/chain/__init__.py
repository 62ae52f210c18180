"""
Node Integration Layer.

Provides abstracted access to Ethereum chain data and block-head notifications.
"""

from bundler.chain.interface import BlockHeader, ChainInterface
from bundler.chain.watcher import BlockSource, NewHeadsBlockWatcher, PollingBlockWatcher
from bundler.chain.web3_adapter import Web3ChainAdapter

__all__ = [
    "BlockHeader",
    "ChainInterface",
    "BlockSource",
    "NewHeadsBlockWatcher",
    "PollingBlockWatcher",
    "Web3ChainAdapter",
]
