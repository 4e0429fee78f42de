"""
Failure taxonomy for the compute gate and its ledger backends.

Every error carries a FailureKind and, where one exists, the underlying
library exception as `cause`. Callers branch on the class or on `kind`,
never on message text.
"""

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    INVALID_IDENTITY = "invalid_identity"
    CONNECTIVITY = "connectivity"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SUBMISSION = "submission"
    CONFIRMATION = "confirmation"
    UNKNOWN = "unknown"
    METERING_UNAVAILABLE = "metering_unavailable"


class ForgePayError(Exception):
    """Base error. `cause` is the original exception, kept for diagnostics."""

    kind: FailureKind = FailureKind.UNKNOWN

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return False


class InvalidRequestError(ForgePayError):
    """Caller contract violation (e.g. zero or negative compute units)."""

    kind = FailureKind.INVALID_REQUEST


class InvalidIdentityError(ForgePayError):
    """Address is not valid for the backend's chain. Raised before any RPC."""

    kind = FailureKind.INVALID_IDENTITY


class ConnectivityError(ForgePayError):
    """Ledger endpoint unreachable or timed out. Safe to retry reads."""

    kind = FailureKind.CONNECTIVITY

    @property
    def retryable(self) -> bool:
        return True


class UnknownChainError(ForgePayError):
    """Any other backend-specific failure."""

    kind = FailureKind.UNKNOWN


class ChargeError(ForgePayError):
    """
    A charge attempt did not report success.

    The caller must not treat work as paid for, and must not assume the
    transfer failed either: see ConfirmationError.
    """


class InsufficientFundsError(ChargeError):
    """Ledger refused the transfer for balance (or spending allowance) reasons."""

    kind = FailureKind.INSUFFICIENT_FUNDS


class SubmissionError(ChargeError):
    """Transaction could not be built, signed or sent; funds did not move."""

    kind = FailureKind.SUBMISSION

    @property
    def retryable(self) -> bool:
        return True


class ConfirmationError(ChargeError):
    """
    Transaction was sent but not confirmed within the bounded wait.

    Outcome is ambiguous. Re-check the balance before any retry, a blind
    retry can double charge.
    """

    kind = FailureKind.CONFIRMATION

    def __init__(self, message: str, tx_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.tx_id = tx_id


class MeteringUnavailableError(ForgePayError):
    """The gate could not read the balance. Distinct from a denial."""

    kind = FailureKind.METERING_UNAVAILABLE

    @property
    def cause_kind(self) -> Optional[FailureKind]:
        if isinstance(self.cause, ForgePayError):
            return self.cause.kind
        return None

    @property
    def retryable(self) -> bool:
        return isinstance(self.cause, ConnectivityError)
