"""
Simulation, submission and run-state models.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class SimulationResult:
    """
    Result of simulating a bundle against a target block.

    Exactly one variant is populated: a success report carrying the
    effective gas price and per-transaction gas usage, or an error message.
    """

    effective_gas_price: Optional[int] = None
    per_tx_gas_used: Tuple[int, ...] = ()
    total_gas_used: int = 0
    coinbase_diff: int = 0
    bundle_hash: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        has_success = self.effective_gas_price is not None
        has_error = self.error_message is not None
        if has_success == has_error:
            raise ValueError("SimulationResult must be either a success report or an error")

    @classmethod
    def success(
        cls,
        effective_gas_price: int,
        per_tx_gas_used: Tuple[int, ...],
        coinbase_diff: int = 0,
        bundle_hash: Optional[str] = None,
    ) -> "SimulationResult":
        per_tx = tuple(per_tx_gas_used)
        return cls(
            effective_gas_price=effective_gas_price,
            per_tx_gas_used=per_tx,
            total_gas_used=sum(per_tx),
            coinbase_diff=coinbase_diff,
            bundle_hash=bundle_hash,
        )

    @classmethod
    def failure(cls, error_message: str) -> "SimulationResult":
        return cls(error_message=error_message or "unknown simulation error")

    @property
    def ok(self) -> bool:
        return self.error_message is None


class OutcomeKind(str, Enum):
    """Resolution of a bundle submitted for one target block."""
    INCLUDED = "included"
    NOT_INCLUDED = "not_included"       # Block passed without inclusion, retry
    NONCE_TOO_HIGH = "nonce_too_high"   # Hold, recheck next block
    FATAL = "fatal"


@dataclass(frozen=True)
class SubmissionOutcome:
    """Tagged resolution of one submission."""

    kind: OutcomeKind
    block_number: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def included(cls, block_number: int) -> "SubmissionOutcome":
        return cls(OutcomeKind.INCLUDED, block_number=block_number)

    @classmethod
    def not_included(cls, block_number: int) -> "SubmissionOutcome":
        return cls(OutcomeKind.NOT_INCLUDED, block_number=block_number)

    @classmethod
    def nonce_too_high(cls, block_number: Optional[int] = None) -> "SubmissionOutcome":
        return cls(OutcomeKind.NONCE_TOO_HIGH, block_number=block_number)

    @classmethod
    def fatal(cls, reason: str, block_number: Optional[int] = None) -> "SubmissionOutcome":
        return cls(OutcomeKind.FATAL, block_number=block_number, reason=reason)


class LoopPhase(str, Enum):
    """Phases of the submission loop."""
    IDLE = "idle"
    SIMULATING = "simulating"
    SUBMITTING = "submitting"
    AWAITING_RESOLUTION = "awaiting_resolution"
    RETRYING = "retrying"
    INCLUDED = "included"
    FATAL = "fatal"
    STOPPED = "stopped"


TERMINAL_PHASES = frozenset({LoopPhase.INCLUDED, LoopPhase.FATAL, LoopPhase.STOPPED})


@dataclass(frozen=True)
class RunState:
    """
    State of one executor run.

    Transitions produce a new RunState; only the submission loop replaces
    the executor's current state.

    Attributes:
        target_block_number: Block the bundle was last submitted for
        total_inclusion_fails: Count of target blocks passed without inclusion
        stopped: Stop flag; once set, block notifications are ignored
        last_processed_block: Highest block head the loop accepted
        phase: Current loop phase
        error: Reason of a fatal or benign stop
    """

    target_block_number: Optional[int] = None
    total_inclusion_fails: int = 0
    stopped: bool = False
    last_processed_block: Optional[int] = None
    phase: LoopPhase = LoopPhase.IDLE
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def evolve(self, **changes) -> "RunState":
        """Return a copy with the given fields changed."""
        return replace(self, **changes)


class RunStatus(str, Enum):
    """Final status of an executor run."""
    INCLUDED = "included"
    STOPPED = "stopped"
    FATAL = "fatal"


@dataclass(frozen=True)
class RunReport:
    """
    Terminal report of an executor run.

    Every terminal outcome carries the final target block number and the
    cumulative inclusion-failure count.
    """

    status: RunStatus
    block_number: Optional[int]
    total_inclusion_fails: int
    auth_address: Optional[str] = None
    error: Optional[str] = None
    tx_hashes: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_state(
        cls,
        state: RunState,
        auth_address: Optional[str] = None,
        tx_hashes: Tuple[str, ...] = (),
    ) -> "RunReport":
        if state.phase == LoopPhase.INCLUDED:
            status = RunStatus.INCLUDED
        elif state.phase == LoopPhase.FATAL:
            status = RunStatus.FATAL
        else:
            status = RunStatus.STOPPED
        return cls(
            status=status,
            block_number=state.target_block_number,
            total_inclusion_fails=state.total_inclusion_fails,
            auth_address=auth_address,
            error=state.error,
            tx_hashes=tuple(tx_hashes),
        )

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome."""
        return 1 if self.status == RunStatus.FATAL else 0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "block_number": self.block_number,
            "total_inclusion_fails": self.total_inclusion_fails,
            "auth_address": self.auth_address,
            "error": self.error,
            "tx_hashes": list(self.tx_hashes),
        }
