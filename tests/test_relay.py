"""
Tests for the relay adapter and submission resolution.

Verifies:
1. Request bodies are signed by the relay-auth identity
2. Simulation results and errors are mapped to SimulationResult
3. Submission errors are classified
4. BundleSubmission resolves inclusion, non-inclusion and nonce-too-high
"""

import json

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from bundler.core.account import AccountIdentity
from bundler.core.bundle import SignedBundle, SignedTransaction
from bundler.core.errors import NetworkError, SubmissionError, SubmissionErrorKind
from bundler.core.outcome import OutcomeKind
from bundler.relay.flashbots import SIGNATURE_HEADER, FlashbotsRelay, parse_simulation
from bundler.relay.submission import BundleSubmission

RELAY_URL = "https://relay.test"
AUTH_KEY = "0x" + "33" * 32


def _signed_bundle(senders_and_nonces) -> SignedBundle:
    return SignedBundle(
        transactions=tuple(
            SignedTransaction(
                raw="0x02" + f"{i:04x}",
                tx_hash="0x" + f"{i + 1:064x}",
                sender=sender,
                nonce=nonce,
            )
            for i, (sender, nonce) in enumerate(senders_and_nonces)
        ),
        bundle_id="test-bundle",
    )


def _relay(chain, handler) -> FlashbotsRelay:
    return FlashbotsRelay(
        auth_identity=AccountIdentity.from_key(AUTH_KEY),
        chain=chain,
        relay_url=RELAY_URL,
        poll_interval_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def _rpc_response(request: httpx.Request, result=None, error=None, status=200) -> httpx.Response:
    payload = {"jsonrpc": "2.0", "id": json.loads(request.content)["id"]}
    if error is not None:
        payload["error"] = error
    else:
        payload["result"] = result
    return httpx.Response(status, json=payload)


SIMULATION_OK = {
    "bundleGasPrice": "41000000000",
    "bundleHash": "0xabc",
    "coinbaseDiff": "861000000000000",
    "results": [
        {"txHash": "0x01", "gasUsed": 21000},
        {"txHash": "0x02", "gasUsed": 46000},
    ],
}


class TestFlashbotsRelay:
    """Tests for the relay JSON-RPC adapter."""

    @pytest.mark.asyncio
    async def test_requests_are_signed(self, mock_chain):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _rpc_response(request, result=SIMULATION_OK)

        relay = _relay(mock_chain, handler)
        await relay.simulate(_signed_bundle([("0xA", 0)]), 101)
        await relay.disconnect()

        request = seen[0]
        address, signature = request.headers[SIGNATURE_HEADER].split(":")
        body_hash = Web3.to_hex(Web3.keccak(text=request.content.decode()))
        recovered = Account.recover_message(encode_defunct(text=body_hash), signature=signature)

        assert recovered == address == relay.auth_identity.address
        assert request.url.host == "relay.test"

    @pytest.mark.asyncio
    async def test_simulate_success(self, mock_chain):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(json.loads(request.content))
            return _rpc_response(request, result=SIMULATION_OK)

        relay = _relay(mock_chain, handler)
        result = await relay.simulate(_signed_bundle([("0xA", 0), ("0xB", 0)]), 101)

        assert result.ok
        assert result.effective_gas_price == 41_000_000_000
        assert result.per_tx_gas_used == (21000, 46000)
        assert result.total_gas_used == 67000
        assert calls[0]["method"] == "eth_callBundle"
        assert calls[0]["params"][0]["blockNumber"] == hex(101)
        assert calls[0]["params"][0]["txs"] == ["0x020000", "0x020001"]

    @pytest.mark.asyncio
    async def test_simulate_relay_error(self, mock_chain):
        def handler(request: httpx.Request) -> httpx.Response:
            return _rpc_response(request, error={"code": -32000, "message": "err: nonce too low"}, status=400)

        result = await _relay(mock_chain, handler).simulate(_signed_bundle([("0xA", 0)]), 101)

        assert not result.ok
        assert result.error_message == "err: nonce too low"

    @pytest.mark.asyncio
    async def test_simulate_timeout_is_network_error(self, mock_chain):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(NetworkError):
            await _relay(mock_chain, handler).simulate(_signed_bundle([("0xA", 0)]), 101)

    @pytest.mark.asyncio
    async def test_non_json_response(self, mock_chain):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(NetworkError):
            await _relay(mock_chain, handler).simulate(_signed_bundle([("0xA", 0)]), 101)

    @pytest.mark.asyncio
    async def test_send_bundle(self, mock_chain):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(json.loads(request.content))
            return _rpc_response(request, result={"bundleHash": "0xfeed"})

        submission = await _relay(mock_chain, handler).send_bundle(_signed_bundle([("0xA", 0)]), 103)

        assert isinstance(submission, BundleSubmission)
        assert submission.target_block == 103
        assert submission.bundle_hash == "0xfeed"
        assert calls[0]["method"] == "eth_sendBundle"
        assert calls[0]["params"][0]["blockNumber"] == hex(103)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message,kind", [
        ("nonce too low", SubmissionErrorKind.NONCE_TOO_LOW),
        ("nonce too high", SubmissionErrorKind.NONCE_TOO_HIGH),
        ("invalid bundle", SubmissionErrorKind.OTHER),
    ])
    async def test_send_bundle_errors(self, mock_chain, message, kind):
        def handler(request: httpx.Request) -> httpx.Response:
            return _rpc_response(request, error={"code": -32000, "message": message})

        with pytest.raises(SubmissionError) as exc_info:
            await _relay(mock_chain, handler).send_bundle(_signed_bundle([("0xA", 0)]), 103)

        assert exc_info.value.kind == kind
        assert exc_info.value.error_code == -32000


class TestParseSimulation:
    """Tests for eth_callBundle result interpretation."""

    def test_reverted_transaction(self):
        result = parse_simulation({
            "bundleGasPrice": "0x1",
            "results": [
                {"txHash": "0x01", "gasUsed": 21000},
                {"txHash": "0x02", "error": "execution reverted", "revert": "TRANSFER_FAILED"},
            ],
        })

        assert not result.ok
        assert "TRANSFER_FAILED" in result.error_message
        assert "tx 1" in result.error_message

    def test_hex_values(self):
        result = parse_simulation({"bundleGasPrice": "0x2a", "results": [{"gasUsed": "0x5208"}]})

        assert result.effective_gas_price == 42
        assert result.per_tx_gas_used == (21000,)

    def test_unexpected_shape(self):
        assert not parse_simulation(None).ok


class TestBundleSubmission:
    """Tests for inclusion resolution."""

    @pytest.mark.asyncio
    async def test_included(self, mock_chain):
        bundle = _signed_bundle([("0xA", 0), ("0xB", 3)])
        mock_chain.head = 101
        mock_chain.auto_advance = True
        mock_chain.block_transactions[102] = [h.upper().replace("0X", "0x") for h in bundle.tx_hashes]

        outcome = await BundleSubmission(mock_chain, bundle, 102, poll_interval_seconds=0).wait()

        assert outcome.kind == OutcomeKind.INCLUDED
        assert outcome.block_number == 102

    @pytest.mark.asyncio
    async def test_partially_included_is_not_included(self, mock_chain):
        bundle = _signed_bundle([("0xA", 0), ("0xB", 3)])
        mock_chain.head = 102
        mock_chain.block_transactions[102] = bundle.tx_hashes[:1]

        outcome = await BundleSubmission(mock_chain, bundle, 102, poll_interval_seconds=0).wait()

        assert outcome.kind == OutcomeKind.NOT_INCLUDED

    @pytest.mark.asyncio
    async def test_nonce_too_high_before_target(self, mock_chain):
        bundle = _signed_bundle([("0xA", 0), ("0xB", 3)])
        mock_chain.head = 100
        mock_chain.nonces["0xB"] = 4

        outcome = await BundleSubmission(mock_chain, bundle, 102, poll_interval_seconds=0).wait()

        assert outcome.kind == OutcomeKind.NONCE_TOO_HIGH

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self, mock_chain):
        bundle = _signed_bundle([("0xA", 0)])
        mock_chain.head = 100

        submission = BundleSubmission(
            mock_chain, bundle, 102, poll_interval_seconds=0.01, timeout_seconds=0.05,
        )

        with pytest.raises(NetworkError):
            await submission.wait()
