"""
Bundle executor.

Coordinates all components to take an assembled bundle from pricing to
inclusion in a future block.
"""

import asyncio
from typing import Awaitable, Dict, Iterable, List, Optional, Tuple

import structlog

from bundler.chain.interface import ChainInterface
from bundler.chain.watcher import BlockSource
from bundler.core.account import AccountIdentity
from bundler.core.bundle import Bundle, BundleAssembler, BundleEntry, SignedBundle, TransactionLike
from bundler.core.errors import GasEstimationError, NetworkError, SimulationError, SubmissionError
from bundler.core.outcome import RunReport, RunState, SimulationResult
from bundler.core.transaction import TransactionRequest
from bundler.engine.loop import (
    DEFAULT_INTERVAL_TO_FUTURE_BLOCK,
    Effect,
    Transition,
    accept_block,
    on_failure,
    on_outcome,
    on_simulation,
    on_stop,
    on_submission_error,
    on_submitted,
)
from bundler.relay.interface import RelayInterface
from bundler.relay.submission import BundleSubmission
from bundler.tx.fees import FeeOracle
from bundler.tx.signer import BundleSigner
from bundler.tx.wrapper import TransactionWrapper

logger = structlog.get_logger(__name__)


class BundleExecutor:
    """
    Executes one bundle against a relay.

    Coordinates:
    - Bundle assembly (append-only, per-entry signer)
    - Fee pricing and concurrent gas estimation
    - Nonce assignment and signing
    - Block-by-block simulation and resubmission until a terminal state

    Usage:
        ```python
        executor = build_executor(settings)
        executor.add_bundle_tx(approve_tx)
        executor.add_entry(sniper, buy_tx)
        report = await executor.execute()
        ```

    Executors are created by ``build_executor``, which validates settings.
    """

    def __init__(
        self,
        chain_id: int,
        chain: ChainInterface,
        relay: RelayInterface,
        block_source: BlockSource,
        sponsor: AccountIdentity,
        executor: AccountIdentity,
        auth: AccountIdentity,
        auth_generated: bool = False,
        interval_to_future_block: int = DEFAULT_INTERVAL_TO_FUTURE_BLOCK,
        fee_oracle: Optional[FeeOracle] = None,
        wrapper: Optional[TransactionWrapper] = None,
        signer: Optional[BundleSigner] = None,
    ):
        self.chain_id = chain_id
        self.chain = chain
        self.relay = relay
        self.block_source = block_source
        self.sponsor = sponsor
        self.executor = executor
        self.auth = auth
        self.auth_generated = auth_generated
        self.interval_to_future_block = interval_to_future_block

        self.fee_oracle = fee_oracle or FeeOracle(chain)
        self.wrapper = wrapper or TransactionWrapper(chain_id)
        self.signer = signer or BundleSigner(chain)

        self.assembler = BundleAssembler()
        self._bundle: Optional[Bundle] = None
        self._signed_bundle: Optional[SignedBundle] = None

        # Run state
        self.state = RunState()
        self._lock = asyncio.Lock()
        self._deferred_block: Optional[int] = None
        self._done = asyncio.Event()
        self._started = False
        self._finished = False

    # Bundle assembly

    def add_entry(self, signer: AccountIdentity, transaction: TransactionLike) -> "BundleExecutor":
        """Append one transaction signed by ``signer``."""
        self._ensure_open()
        self.assembler.add_entry(signer, transaction)
        return self

    def add_entries(self, entries: Iterable) -> "BundleExecutor":
        """Append several entries in order."""
        self._ensure_open()
        self.assembler.add_entries(entries)
        return self

    def add_bundle_tx(
        self,
        transaction: TransactionLike,
        signer: Optional[AccountIdentity] = None,
    ) -> "BundleExecutor":
        """Append a transaction, signed by the executing identity unless told otherwise."""
        return self.add_entry(signer or self.executor, transaction)

    def add_multiple_bundle_tx(
        self,
        transactions: Iterable[TransactionLike],
        signer: Optional[AccountIdentity] = None,
    ) -> "BundleExecutor":
        """Append transactions that share one signer (the executing identity by default)."""
        identity = signer or self.executor
        return self.add_entries([(identity, tx) for tx in transactions])

    def _ensure_open(self) -> None:
        if self._bundle is not None:
            raise RuntimeError("Bundle already finalized")

    # Preparation

    async def prepare(self) -> SignedBundle:
        """
        Finalize, price, estimate and sign the bundle.

        Runs once; later calls return the same signed bundle.

        Raises:
            EmptyBundle: If no transactions were added
            InvalidEntry: If nonces of one signer are out of order
            InvalidCall: If a call cannot be normalized
            NetworkError: If fees or nonces cannot be read
        """
        if self._signed_bundle is not None:
            return self._signed_bundle

        bundle = self.assembler.finalize()
        fees = await self.fee_oracle.get_fees()
        estimates = await self._estimate_gas(bundle)

        requests = [
            (entry.signer, self.wrapper.wrap(entry.transaction, fees, estimate))
            for entry, estimate in zip(bundle.entries, estimates)
        ]
        await self._check_budgets(requests)

        self._bundle = bundle
        self._signed_bundle = await self.signer.sign(requests, bundle_id=bundle.bundle_id)
        return self._signed_bundle

    async def _estimate_gas(self, bundle: Bundle) -> List[Optional[int]]:
        """
        Estimate gas for every entry concurrently.

        Entries with an explicit gas limit are skipped. A call whose
        estimate fails (typically because it depends on an earlier bundle
        transaction) falls back to the wrapper's fixed default.
        """
        async def estimate(position: int, entry: BundleEntry) -> Optional[int]:
            if entry.transaction.gas_limit is not None:
                return None
            try:
                return await self.chain.estimate_gas(
                    entry.transaction.estimation_dict(entry.signer.address)
                )
            except GasEstimationError as e:
                logger.warning(
                    "gas_estimate_failed_using_default",
                    position=position,
                    signer=entry.signer.address,
                    default=self.wrapper.default_gas_limit(entry.transaction),
                    error=str(e),
                )
                return None

        return list(await asyncio.gather(
            *(estimate(position, entry) for position, entry in enumerate(bundle.entries))
        ))

    async def _check_budgets(self, requests: List[Tuple[AccountIdentity, TransactionRequest]]) -> None:
        """
        Warn when a signer cannot cover its worst-case spend.

        Value sent to a signer earlier in the bundle counts toward its budget.
        """
        costs: Dict[str, int] = {}
        credits: Dict[str, int] = {}
        for identity, request in requests:
            costs[identity.address] = costs.get(identity.address, 0) + request.max_cost
            if request.to is not None and request.value:
                credits[request.to.lower()] = credits.get(request.to.lower(), 0) + request.value

        addresses = list(costs)
        balances = await asyncio.gather(*(self.chain.get_balance(a) for a in addresses))
        for address, balance in zip(addresses, balances):
            budget = balance + credits.get(address.lower(), 0)
            if budget < costs[address]:
                logger.warning(
                    "signer_budget_insufficient",
                    signer=address,
                    balance=balance,
                    bundle_credit=credits.get(address.lower(), 0),
                    max_cost=costs[address],
                )

    # Execution

    async def simulate_once(self, raise_on_error: bool = False) -> SimulationResult:
        """
        Simulate the bundle against the next block without submitting it.

        Raises:
            SimulationError: If ``raise_on_error`` and the relay rejects the bundle
        """
        signed = await self.prepare()
        head = await self.chain.get_block_number()
        await self.relay.connect()
        result = await self.relay.simulate(signed, head + 1)

        if result.ok:
            logger.info(
                "simulation_succeeded",
                block_number=head + 1,
                effective_gas_price=result.effective_gas_price,
                total_gas_used=result.total_gas_used,
            )
        else:
            logger.warning("simulation_failed", block_number=head + 1, error=result.error_message)
            if raise_on_error:
                raise SimulationError(result.error_message, block_number=head + 1)
        return result

    async def execute(self) -> RunReport:
        """
        Prepare the bundle and resubmit it on every new block until a terminal state.

        Returns:
            The terminal run report
        """
        if self._started:
            raise RuntimeError("Executor already started")
        self._started = True

        await self.prepare()
        if self.state.stopped:
            return self.report

        await self.relay.connect()
        try:
            logger.info(
                "executor_starting",
                bundle_id=self._bundle.bundle_id[:8] + "...",
                size=len(self._signed_bundle),
                interval_to_future_block=self.interval_to_future_block,
                auth_address=self.auth.address,
            )
            await self.block_source.subscribe(self._on_block)
            await self._done.wait()
        finally:
            self.block_source.unsubscribe()
            await self.relay.disconnect()

        return self.report

    def stop(self) -> None:
        """
        Stop the run.

        Sets the stop flag and unsubscribes from block heads. Results of
        calls already in flight are discarded. Calling it again does nothing.
        """
        if self.state.stopped:
            return
        logger.info("executor_stopping")
        self._apply(on_stop(self.state))

    async def wait_closed(self) -> RunReport:
        """Wait until the run reaches a terminal state."""
        await self._done.wait()
        return self.report

    @property
    def report(self) -> RunReport:
        tx_hashes = tuple(self._signed_bundle.tx_hashes) if self._signed_bundle else ()
        return RunReport.from_state(self.state, auth_address=self.auth.address, tx_hashes=tx_hashes)

    @property
    def signed_bundle(self) -> Optional[SignedBundle]:
        return self._signed_bundle

    def _apply(self, transition: Transition) -> Transition:
        self.state = transition.state
        if transition.effect == Effect.HALT:
            self._finish()
        return transition

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self.block_source.unsubscribe()
        self._done.set()

        report = self.report
        log = logger.error if report.exit_code else logger.info
        log(
            "executor_finished",
            status=report.status.value,
            block_number=report.block_number,
            total_inclusion_fails=report.total_inclusion_fails,
            error=report.error,
        )

    async def _on_block(self, block_number: int) -> None:
        """
        Block-head handler.

        Simulation and submission run under the cycle lock, one head at a
        time. A head arriving while the lock is held is coalesced into the
        latest such head and gets its own cycle once the lock is released.
        Resolution waits happen outside the lock, so the bundle is submitted
        for every eligible head while earlier submissions are still pending.
        """
        if self.state.stopped:
            return
        if self._lock.locked():
            if self._deferred_block is None or block_number > self._deferred_block:
                self._deferred_block = block_number
            logger.debug("block_deferred_cycle_in_progress", block_number=block_number)
            return

        submissions = []
        async with self._lock:
            next_block: Optional[int] = block_number
            while next_block is not None:
                submission = await self._guard(next_block, self._submit_cycle(next_block))
                if submission is not None:
                    submissions.append((next_block, submission))
                next_block, self._deferred_block = self._deferred_block, None

        await asyncio.gather(*(
            self._guard(number, self._resolve(number, target, submission))
            for number, (target, submission) in submissions
        ))

    async def _guard(self, block_number: int, cycle: Awaitable):
        try:
            return await cycle
        except Exception as e:
            logger.error("cycle_failed", block_number=block_number, error=str(e))
            if not self.state.stopped:
                self._apply(on_failure(self.state, str(e)))
            return None

    async def _submit_cycle(self, block_number: int) -> Optional[Tuple[int, BundleSubmission]]:
        """Simulate against the block after ``block_number`` and submit for the target."""
        transition = self._apply(accept_block(self.state, block_number))
        if transition.effect != Effect.SIMULATE:
            return None

        signed = self._signed_bundle
        try:
            result = await self.relay.simulate(signed, block_number + 1)
        except NetworkError as e:
            self._apply_unless_stopped(on_failure(self.state, str(e)))
            return None

        if self._discard("simulation", block_number):
            return None
        transition = self._apply(on_simulation(
            self.state, block_number, result, self.interval_to_future_block,
        ))
        if transition.effect != Effect.SUBMIT:
            return None

        target = self.state.target_block_number
        try:
            submission = await self.relay.send_bundle(signed, target)
        except SubmissionError as e:
            self._apply_unless_stopped(on_submission_error(self.state, e))
            return None
        except NetworkError as e:
            self._apply_unless_stopped(on_failure(self.state, str(e)))
            return None

        if self._discard("submission", block_number):
            return None
        self._apply(on_submitted(self.state))
        logger.info("bundle_submitted", block_number=block_number, target_block=target)
        return target, submission

    async def _resolve(self, block_number: int, target: int, submission: BundleSubmission) -> None:
        try:
            outcome = await submission.wait()
        except SubmissionError as e:
            self._apply_unless_stopped(on_submission_error(self.state, e))
            return
        except NetworkError as e:
            self._apply_unless_stopped(on_failure(self.state, str(e)))
            return

        if self._discard("resolution", block_number):
            return
        self._apply(on_outcome(self.state, outcome))
        logger.info(
            "bundle_resolved",
            target_block=target,
            outcome=outcome.kind.value,
            total_inclusion_fails=self.state.total_inclusion_fails,
        )

    def _discard(self, stage: str, block_number: int) -> bool:
        """Drop a result that arrives after the run was stopped."""
        if self.state.stopped:
            logger.info("result_discarded_after_stop", stage=stage, block_number=block_number)
            return True
        return False

    def _apply_unless_stopped(self, transition: Transition) -> None:
        if not self.state.stopped:
            self._apply(transition)
