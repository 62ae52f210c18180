"""
Flashbots-style relay adapter.

Speaks the relay's JSON-RPC (``eth_callBundle``, ``eth_sendBundle``) over
HTTP. Each request body is signed by the relay-auth identity and the
signature travels in the ``X-Flashbots-Signature`` header.
"""

import json
from typing import Any, List, Optional

import httpx
import structlog
from web3 import Web3

from bundler.chain.interface import ChainInterface
from bundler.config import default_relay_url
from bundler.core.account import AccountIdentity
from bundler.core.bundle import SignedBundle
from bundler.core.errors import NetworkError, SubmissionError
from bundler.core.outcome import SimulationResult
from bundler.relay.interface import RelayInterface
from bundler.relay.submission import BundleSubmission

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Flashbots-Signature"


class RelayRequestError(Exception):
    """Raised when the relay answers with a JSON-RPC error."""

    def __init__(self, message: str, error_code: Optional[int] = None):
        super().__init__(message)
        self.error_code = error_code


class FlashbotsRelay(RelayInterface):
    """
    Flashbots relay adapter.

    Implements the RelayInterface using the relay's JSON-RPC over HTTP.
    """

    def __init__(
        self,
        auth_identity: AccountIdentity,
        chain: ChainInterface,
        relay_url: Optional[str] = None,
        timeout_seconds: float = 15.0,
        poll_interval_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the relay adapter.

        Args:
            auth_identity: Identity signing relay requests (reputation key)
            chain: Node used to resolve inclusion of submitted bundles
            relay_url: Relay endpoint (mainnet Flashbots relay if not provided)
            timeout_seconds: Timeout for each relay request
            poll_interval_seconds: Head polling interval while resolving a submission
            transport: Custom httpx transport (tests)
        """
        self.auth_identity = auth_identity
        self.chain = chain
        self.relay_url = relay_url or default_relay_url(None)
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
        )
        logger.info("relay_connected", relay_url=self.relay_url, auth_address=self.auth_identity.address)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("relay_disconnected")

    def sign_body(self, body: str) -> str:
        """
        Build the signature header value for a request body.

        The relay expects ``<address>:<signature>`` where the signature is a
        personal_sign over the hex keccak hash of the body.
        """
        body_hash = Web3.to_hex(Web3.keccak(text=body))
        return f"{self.auth_identity.address}:{self.auth_identity.sign_text(body_hash)}"

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        """Make a signed JSON-RPC request to the relay."""
        if not self._client:
            await self.connect()

        self._request_id += 1
        body = json.dumps({
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        })
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: self.sign_body(body),
        }

        try:
            response = await self._client.post(self.relay_url, content=body, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("relay_timeout", method=method, timeout=self.timeout_seconds)
            raise NetworkError(f"Relay {method} timed out: {e}")
        except httpx.RequestError as e:
            logger.error("relay_request_error", method=method, error=str(e))
            raise NetworkError(f"Relay {method} request failed: {e}")

        try:
            payload = response.json()
        except ValueError:
            logger.error("relay_bad_response", method=method, status=response.status_code, body=response.text[:200])
            raise NetworkError(f"Relay {method} returned HTTP {response.status_code}: {response.text[:200]}")

        error = payload.get("error") if isinstance(payload, dict) else None
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            logger.warning("relay_rpc_error", method=method, code=code, error=message)
            raise RelayRequestError(message, code)

        if response.status_code != 200:
            raise NetworkError(f"Relay {method} returned HTTP {response.status_code}")

        return payload.get("result")

    async def simulate(self, signed_bundle: SignedBundle, block_number: int) -> SimulationResult:
        """Simulate the bundle with ``eth_callBundle``."""
        params = [{
            "txs": signed_bundle.raw_transactions,
            "blockNumber": hex(block_number),
            "stateBlockNumber": "latest",
        }]

        try:
            result = await self._rpc("eth_callBundle", params)
        except RelayRequestError as e:
            return SimulationResult.failure(str(e))

        return parse_simulation(result)

    async def send_bundle(self, signed_bundle: SignedBundle, block_number: int) -> BundleSubmission:
        """Submit the bundle with ``eth_sendBundle`` for exactly ``block_number``."""
        params = [{
            "txs": signed_bundle.raw_transactions,
            "blockNumber": hex(block_number),
        }]

        try:
            result = await self._rpc("eth_sendBundle", params)
        except RelayRequestError as e:
            raise SubmissionError(str(e), error_code=e.error_code)

        bundle_hash = result.get("bundleHash") if isinstance(result, dict) else None
        logger.info("bundle_sent", target_block=block_number, bundle_hash=bundle_hash)

        return BundleSubmission(
            chain=self.chain,
            signed_bundle=signed_bundle,
            target_block=block_number,
            bundle_hash=bundle_hash,
            poll_interval_seconds=self.poll_interval_seconds,
        )


def parse_simulation(result: Any) -> SimulationResult:
    """
    Interpret an ``eth_callBundle`` result.

    A result where any transaction reports an error or revert is turned
    into the error variant.
    """
    if not isinstance(result, dict):
        return SimulationResult.failure(f"Unexpected simulation result: {result!r}")

    tx_results = result.get("results") or []
    for position, tx in enumerate(tx_results):
        if tx.get("error"):
            reason = tx.get("revert") or tx.get("error")
            return SimulationResult.failure(f"tx {position} ({tx.get('txHash')}): {reason}")

    return SimulationResult.success(
        effective_gas_price=_to_int(result.get("bundleGasPrice")),
        per_tx_gas_used=tuple(_to_int(tx.get("gasUsed")) for tx in tx_results),
        coinbase_diff=_to_int(result.get("coinbaseDiff")),
        bundle_hash=result.get("bundleHash"),
    )


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)
