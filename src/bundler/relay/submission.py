"""
Submission handle and inclusion resolution.

After a bundle is accepted for a target block, ``wait()`` watches the chain
until the target block is mined and reports whether every bundle
transaction landed in it.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from bundler.chain.interface import ChainInterface
from bundler.core.bundle import SignedBundle
from bundler.core.errors import NetworkError
from bundler.core.outcome import SubmissionOutcome

logger = structlog.get_logger(__name__)


@dataclass
class BundleSubmission:
    """
    A bundle accepted by the relay for one target block.

    Attributes:
        chain: Node used to observe inclusion
        signed_bundle: The bundle that was submitted
        target_block: Block the bundle targets
        bundle_hash: Relay-assigned bundle hash, if returned
        poll_interval_seconds: Delay between head checks
        timeout_seconds: Give up if the chain does not reach the target in time
    """

    chain: ChainInterface
    signed_bundle: SignedBundle
    target_block: int
    bundle_hash: Optional[str] = None
    poll_interval_seconds: float = 1.0
    timeout_seconds: float = 120.0

    async def wait(self) -> SubmissionOutcome:
        """
        Resolve the submission.

        Before the target block: if any bundle account's on-chain nonce has
        moved past the bundle's lowest nonce for it, the bundle can no
        longer land and NONCE_TOO_HIGH is returned. Once the target block
        exists, the outcome is INCLUDED if every bundle transaction is in
        it, NOT_INCLUDED otherwise.

        Raises:
            NetworkError: If the chain does not reach the target block in time
        """
        try:
            return await asyncio.wait_for(self._resolve(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise NetworkError(
                f"Target block {self.target_block} not reached within {self.timeout_seconds}s"
            )

    async def _resolve(self) -> SubmissionOutcome:
        min_nonces = self.signed_bundle.min_nonce_by_account()

        while True:
            head = await self.chain.get_block_number()
            if head >= self.target_block:
                break

            for address, nonce in min_nonces.items():
                on_chain = await self.chain.get_transaction_count(address, "latest")
                if on_chain > nonce:
                    logger.info(
                        "bundle_nonce_too_high",
                        target_block=self.target_block,
                        account=address,
                        bundle_nonce=nonce,
                        chain_nonce=on_chain,
                    )
                    return SubmissionOutcome.nonce_too_high(self.target_block)

            await asyncio.sleep(self.poll_interval_seconds)

        included = set(await self.chain.get_block_transaction_hashes(self.target_block))
        if all(h.lower() in included for h in self.signed_bundle.tx_hashes):
            return SubmissionOutcome.included(self.target_block)
        return SubmissionOutcome.not_included(self.target_block)
