"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set, Union

import pytest

from bundler.chain.interface import BlockHeader, ChainInterface
from bundler.chain.watcher import BlockHandler, BlockSource
from bundler.core.account import AccountIdentity
from bundler.core.bundle import SignedBundle
from bundler.core.errors import GasEstimationError, NetworkError
from bundler.core.outcome import SimulationResult, SubmissionOutcome
from bundler.engine.builder import ExecutorSettings, build_executor
from bundler.relay.interface import RelayInterface


# ============================================================================
# Keys
# ============================================================================

SPONSOR_KEY = "0x" + "11" * 32
EXECUTOR_KEY = "0x" + "22" * 32
AUTH_KEY = "0x" + "33" * 32
SNIPER_KEYS = ["0x" + "44" * 32, "0x" + "55" * 32]

TOKEN_ADDRESS = "0x" + "aa" * 20
ROUTER_ADDRESS = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"

GWEI = 10 ** 9


@pytest.fixture
def sponsor() -> AccountIdentity:
    return AccountIdentity.from_key(SPONSOR_KEY, label="sponsor")


@pytest.fixture
def executor_identity() -> AccountIdentity:
    return AccountIdentity.from_key(EXECUTOR_KEY, label="executor")


@pytest.fixture
def snipers() -> List[AccountIdentity]:
    return [
        AccountIdentity.from_key(key, label=f"sniper-{i + 1}")
        for i, key in enumerate(SNIPER_KEYS)
    ]


# ============================================================================
# Mock Chain
# ============================================================================

class MockChain(ChainInterface):
    """In-memory chain for testing."""

    def __init__(self, head: int = 100, base_fee: int = 10 * GWEI):
        self.head = head
        self.base_fee = base_fee
        self.chain_id = 1
        self.nonces: Dict[str, int] = {}
        self.balances: Dict[str, int] = {}
        self.block_transactions: Dict[int, List[str]] = {}
        self.gas_estimate = 50_000
        self.reverting_targets: Set[str] = set()
        self.estimate_calls: List[Dict[str, Any]] = []
        self.auto_advance = False
        self.fail_blocks = False
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_block(self, tag: Union[int, str] = "latest") -> BlockHeader:
        if self.fail_blocks:
            raise NetworkError("node unreachable")
        number = self.head if tag == "latest" else int(tag)
        return BlockHeader(
            number=number,
            base_fee_per_gas=self.base_fee,
            transaction_hashes=list(self.block_transactions.get(number, [])),
        )

    async def get_block_number(self) -> int:
        head = self.head
        if self.auto_advance:
            self.head += 1
        return head

    async def get_transaction_count(self, address: str, tag: Union[int, str] = "pending") -> int:
        return self.nonces.get(address, 0)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        self.estimate_calls.append(tx)
        if tx.get("to") in self.reverting_targets:
            raise GasEstimationError("execution reverted")
        return self.gas_estimate

    async def get_balance(self, address: str) -> int:
        return self.balances.get(address, 0)


@pytest.fixture
def mock_chain() -> MockChain:
    return MockChain()


# ============================================================================
# Mock Relay
# ============================================================================

class ScriptedSubmission:
    """Submission handle resolving to a scripted outcome."""

    def __init__(self, outcome: Union[SubmissionOutcome, Exception], gate: Optional[asyncio.Event] = None):
        self.outcome = outcome
        self.gate = gate

    async def wait(self) -> SubmissionOutcome:
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class MockRelay(RelayInterface):
    """Relay returning scripted simulation results and outcomes."""

    def __init__(self):
        self.simulations: List[Union[SimulationResult, Exception]] = []
        self.outcomes: List[Union[SubmissionOutcome, Exception]] = []
        self.send_errors: List[Optional[Exception]] = []
        self.simulated_blocks: List[int] = []
        self.sent_blocks: List[int] = []
        self.gate: Optional[asyncio.Event] = None
        self.simulate_gate: Optional[asyncio.Event] = None
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def simulate(self, signed_bundle: SignedBundle, block_number: int) -> SimulationResult:
        self.simulated_blocks.append(block_number)
        if self.simulate_gate is not None:
            await self.simulate_gate.wait()
        result = self.simulations.pop(0) if self.simulations else SimulationResult.success(
            effective_gas_price=41 * GWEI,
            per_tx_gas_used=tuple(21_000 for _ in signed_bundle.transactions),
        )
        if isinstance(result, Exception):
            raise result
        return result

    async def send_bundle(self, signed_bundle: SignedBundle, block_number: int) -> ScriptedSubmission:
        self.sent_blocks.append(block_number)
        error = self.send_errors.pop(0) if self.send_errors else None
        if error is not None:
            raise error
        outcome = self.outcomes.pop(0) if self.outcomes else SubmissionOutcome.not_included(block_number)
        return ScriptedSubmission(outcome, self.gate)


@pytest.fixture
def mock_relay() -> MockRelay:
    return MockRelay()


# ============================================================================
# Manual Block Source
# ============================================================================

class ManualBlockSource(BlockSource):
    """Block source driven by the test."""

    def __init__(self):
        super().__init__()
        self.subscribed = asyncio.Event()
        self.unsubscribe_count = 0

    async def subscribe(self, handler: BlockHandler) -> None:
        self._handler = handler
        self.subscribed.set()

    def unsubscribe(self) -> None:
        if self._handler is None:
            return
        self._handler = None
        self.unsubscribe_count += 1

    async def emit(self, block_number: int) -> None:
        """Deliver a block and wait for the handler to finish."""
        if self._handler is not None:
            await self._handler(block_number)

    def emit_nowait(self, block_number: int) -> asyncio.Task:
        """Deliver a block without waiting for the handler."""
        return asyncio.create_task(self.emit(block_number))


@pytest.fixture
def block_source() -> ManualBlockSource:
    return ManualBlockSource()


# ============================================================================
# Executor
# ============================================================================

@pytest.fixture
def executor_settings(mock_chain, mock_relay, block_source) -> ExecutorSettings:
    return ExecutorSettings(
        network_id=1,
        chain=mock_chain,
        sponsor_private_key=SPONSOR_KEY,
        executor_private_key=EXECUTOR_KEY,
        auth_private_key=AUTH_KEY,
        interval_to_future_block=2,
        relay=mock_relay,
        block_source=block_source,
    )


@pytest.fixture
def executor(executor_settings):
    """Executor with a two-transaction bundle (approve-like call and a transfer)."""
    bundle_executor = build_executor(executor_settings)
    bundle_executor.add_bundle_tx({"to": TOKEN_ADDRESS, "data": "0x095ea7b3"})
    bundle_executor.add_entry(bundle_executor.sponsor, {"to": ROUTER_ADDRESS, "value": 10 ** 15})
    return bundle_executor
