"""
Abstract interface for bundle relays.

A relay simulates signed bundles against a target block and accepts them
for inclusion in exactly that block.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from bundler.core.bundle import SignedBundle
from bundler.core.outcome import SimulationResult

if TYPE_CHECKING:
    from bundler.relay.submission import BundleSubmission


class RelayInterface(ABC):
    """
    Abstract interface for a private block-builder relay.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the relay session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the relay session."""
        pass

    @abstractmethod
    async def simulate(self, signed_bundle: SignedBundle, block_number: int) -> SimulationResult:
        """
        Simulate a signed bundle for a target block.

        Relay-side rejections are returned as the error variant of
        SimulationResult rather than raised.

        Raises:
            NetworkError: If the relay cannot be reached or times out
        """
        pass

    @abstractmethod
    async def send_bundle(self, signed_bundle: SignedBundle, block_number: int) -> "BundleSubmission":
        """
        Submit a signed bundle for inclusion in ``block_number``.

        Returns:
            A submission handle whose ``wait()`` resolves the outcome

        Raises:
            SubmissionError: If the relay rejects the bundle
            NetworkError: If the relay cannot be reached or times out
        """
        pass
