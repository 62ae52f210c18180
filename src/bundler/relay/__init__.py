"""
Relay Integration Layer.

Simulation and submission of signed bundles to a private block-builder relay.
"""

from bundler.relay.interface import RelayInterface
from bundler.relay.flashbots import FlashbotsRelay
from bundler.relay.submission import BundleSubmission

__all__ = [
    "RelayInterface",
    "FlashbotsRelay",
    "BundleSubmission",
]
