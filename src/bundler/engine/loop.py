"""
Submission loop state machine.

Each function takes the current RunState plus the result of one
collaborator call and returns the next state together with the effect the
driver must perform next. No I/O happens here; the executor owns the
collaborators and feeds their results in.

    IDLE -> SIMULATING -> SUBMITTING -> AWAITING_RESOLUTION
         -> RETRYING | INCLUDED | FATAL | STOPPED
"""

from dataclasses import dataclass
from enum import Enum

from bundler.core.errors import NONCE_TOO_LOW_SIGNATURE, SubmissionError, SubmissionErrorKind
from bundler.core.outcome import (
    LoopPhase,
    OutcomeKind,
    RunState,
    SimulationResult,
    SubmissionOutcome,
)

DEFAULT_INTERVAL_TO_FUTURE_BLOCK = 2


class Effect(str, Enum):
    """What the driver does after a transition."""
    NONE = "none"                           # Ignore this notification
    SIMULATE = "simulate"                   # Simulate against the accepted block
    SUBMIT = "submit"                       # Send the bundle for state.target_block_number
    AWAIT_RESOLUTION = "await_resolution"   # Wait on the submission handle
    AWAIT_NEXT_BLOCK = "await_next_block"   # Stay subscribed, nothing else to do
    HALT = "halt"                           # Terminal; unsubscribe and report


@dataclass(frozen=True)
class Transition:
    state: RunState
    effect: Effect


def accept_block(state: RunState, block_number: int) -> Transition:
    """
    Decide whether a block-head notification starts a new cycle.

    Stopped runs ignore every notification; a block not strictly above the
    last processed one is a duplicate or stale delivery.
    """
    if state.stopped or state.is_terminal:
        return Transition(state, Effect.NONE)
    if state.last_processed_block is not None and block_number <= state.last_processed_block:
        return Transition(state, Effect.NONE)

    return Transition(
        state.evolve(last_processed_block=block_number, phase=LoopPhase.SIMULATING),
        Effect.SIMULATE,
    )


def on_simulation(
    state: RunState,
    block_number: int,
    result: SimulationResult,
    interval_to_future_block: int = DEFAULT_INTERVAL_TO_FUTURE_BLOCK,
) -> Transition:
    """
    Handle a simulation result for ``block_number``.

    A "nonce too low" error means the bundle most likely landed through an
    earlier attempt, so the run stops without counting it as a failure.
    """
    if not result.ok:
        message = result.error_message
        if NONCE_TOO_LOW_SIGNATURE in message.lower():
            return Transition(
                state.evolve(phase=LoopPhase.STOPPED, stopped=True, error=message),
                Effect.HALT,
            )
        return Transition(
            state.evolve(phase=LoopPhase.FATAL, stopped=True, error=f"Simulation error: {message}"),
            Effect.HALT,
        )

    return Transition(
        state.evolve(
            target_block_number=block_number + interval_to_future_block,
            phase=LoopPhase.SUBMITTING,
        ),
        Effect.SUBMIT,
    )


def on_submitted(state: RunState) -> Transition:
    """The relay accepted the bundle for the target block."""
    return Transition(state.evolve(phase=LoopPhase.AWAITING_RESOLUTION), Effect.AWAIT_RESOLUTION)


def on_outcome(state: RunState, outcome: SubmissionOutcome) -> Transition:
    """Handle the resolution of a submission."""
    if outcome.kind == OutcomeKind.INCLUDED:
        target = outcome.block_number if outcome.block_number is not None else state.target_block_number
        return Transition(
            state.evolve(phase=LoopPhase.INCLUDED, stopped=True, target_block_number=target),
            Effect.HALT,
        )

    if outcome.kind == OutcomeKind.NOT_INCLUDED:
        return Transition(
            state.evolve(
                phase=LoopPhase.RETRYING,
                total_inclusion_fails=state.total_inclusion_fails + 1,
            ),
            Effect.AWAIT_NEXT_BLOCK,
        )

    if outcome.kind == OutcomeKind.NONCE_TOO_HIGH:
        return Transition(state.evolve(phase=LoopPhase.RETRYING), Effect.AWAIT_NEXT_BLOCK)

    return on_failure(state, outcome.reason or "Submission failed")


def on_submission_error(state: RunState, error: SubmissionError) -> Transition:
    """Handle a relay rejection of the submission itself."""
    if error.kind == SubmissionErrorKind.NONCE_TOO_LOW:
        return Transition(
            state.evolve(phase=LoopPhase.STOPPED, stopped=True, error=str(error)),
            Effect.HALT,
        )
    if error.kind == SubmissionErrorKind.NONCE_TOO_HIGH:
        return Transition(state.evolve(phase=LoopPhase.RETRYING), Effect.AWAIT_NEXT_BLOCK)
    return on_failure(state, f"Submission error: {error}")


def on_failure(state: RunState, reason: str) -> Transition:
    """Any unrecoverable error ends the run."""
    return Transition(
        state.evolve(phase=LoopPhase.FATAL, stopped=True, error=reason),
        Effect.HALT,
    )


def on_stop(state: RunState) -> Transition:
    """
    Handle an external stop request.

    A run that already reached a terminal phase keeps it.
    """
    if state.is_terminal:
        return Transition(state.evolve(stopped=True), Effect.NONE)
    return Transition(state.evolve(phase=LoopPhase.STOPPED, stopped=True), Effect.HALT)
