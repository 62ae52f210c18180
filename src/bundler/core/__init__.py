"""
Core bundler components.

This module contains the data model shared by every layer: identities,
transactions, bundles, simulation and submission outcomes, and errors.
"""

from bundler.core.account import AccountIdentity
from bundler.core.bundle import Bundle, BundleAssembler, BundleEntry, SignedBundle, SignedTransaction
from bundler.core.outcome import (
    LoopPhase,
    OutcomeKind,
    RunReport,
    RunState,
    RunStatus,
    SimulationResult,
    SubmissionOutcome,
)
from bundler.core.transaction import FeeModel, RawCall, TransactionRequest

__all__ = [
    "AccountIdentity",
    "Bundle",
    "BundleAssembler",
    "BundleEntry",
    "SignedBundle",
    "SignedTransaction",
    "LoopPhase",
    "OutcomeKind",
    "RunReport",
    "RunState",
    "RunStatus",
    "SimulationResult",
    "SubmissionOutcome",
    "FeeModel",
    "RawCall",
    "TransactionRequest",
]
