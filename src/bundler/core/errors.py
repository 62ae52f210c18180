"""
Error taxonomy for bundle construction and submission.

Construction and assembly errors are raised synchronously to the caller.
Loop-level errors are recorded in the run state and surfaced with the
terminal run report.
"""

from enum import Enum
from typing import Dict, Optional

NONCE_TOO_LOW_SIGNATURE = "nonce too low"
NONCE_TOO_HIGH_SIGNATURE = "nonce too high"


class BundlerError(Exception):
    """Base class for all bundler errors."""
    pass


class ValidationError(BundlerError):
    """
    Raised when executor construction input is missing or malformed.

    Every offending field is reported at once rather than one at a time.

    Attributes:
        errors: Mapping of field name to the reason it was rejected
    """

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        details = ", ".join(f"{name}: {reason}" for name, reason in self.errors.items())
        super().__init__(f"Invalid executor settings ({details})")

    @property
    def fields(self) -> list:
        """Names of the rejected fields, in validation order."""
        return list(self.errors)


class BundleAssemblyError(BundlerError):
    """Base class for bundle assembly misuse."""
    pass


class InvalidEntry(BundleAssemblyError):
    """Raised when a bundle entry lacks a signer or transaction, or has a bad nonce order."""
    pass


class EmptyBundle(BundleAssemblyError):
    """Raised when finalizing a bundle that has no entries."""

    def __init__(self, message: str = "Empty transactions bundle"):
        super().__init__(message)


class InvalidCall(BundleAssemblyError):
    """Raised when a raw call cannot be turned into a submittable transaction."""
    pass


class SimulationError(BundlerError):
    """Raised when the relay rejects a simulated bundle."""

    def __init__(self, message: str, block_number: Optional[int] = None):
        super().__init__(message)
        self.error_message = message
        self.block_number = block_number


class SubmissionErrorKind(str, Enum):
    """Classification of relay submission failures."""
    NONCE_TOO_LOW = "nonce_too_low"     # Bundle most likely landed already
    NONCE_TOO_HIGH = "nonce_too_high"   # Transient, recheck on next block
    OTHER = "other"                     # Fatal


def classify_error_message(message: Optional[str]) -> SubmissionErrorKind:
    """Map a relay or node error message onto a submission error kind."""
    text = (message or "").lower()
    if NONCE_TOO_LOW_SIGNATURE in text:
        return SubmissionErrorKind.NONCE_TOO_LOW
    if NONCE_TOO_HIGH_SIGNATURE in text:
        return SubmissionErrorKind.NONCE_TOO_HIGH
    return SubmissionErrorKind.OTHER


class SubmissionError(BundlerError):
    """Raised when the relay rejects a bundle submission."""

    def __init__(
        self,
        message: str,
        kind: Optional[SubmissionErrorKind] = None,
        error_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind or classify_error_message(message)
        self.error_code = error_code


class NetworkError(BundlerError):
    """Raised when the RPC node or relay cannot be reached or times out."""
    pass


class GasEstimationError(BundlerError):
    """Raised when the node refuses to estimate gas for a call."""
    pass
