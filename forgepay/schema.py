"""
Value types passed between the gate, its backends and the runtime.

Amounts are ints in the token's smallest unit. Never floats.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from forgepay.errors import FailureKind


class SettlementReceipt(BaseModel):
    """Outcome of one charge attempt. Immutable, not persisted here."""

    model_config = ConfigDict(frozen=True)

    success: bool = Field(..., description="True only when the ledger confirmed the transfer")
    chain: str = Field(..., description="Backend family, e.g. solana or evm")
    holder: str = Field(..., description="Identity that was charged")
    payee: str = Field(..., description="Treasury identity that received the tokens")
    amount: int = Field(..., ge=0, description="Smallest token units")
    tx_id: Optional[str] = Field(None, description="Signature (Solana) or tx hash (EVM)")
    failure_kind: Optional[FailureKind] = None
    reason: Optional[str] = None

    @classmethod
    def confirmed(cls, chain: str, holder: str, payee: str, amount: int, tx_id: str) -> "SettlementReceipt":
        return cls(success=True, chain=chain, holder=holder, payee=payee, amount=amount, tx_id=tx_id)

    @classmethod
    def failed(
        cls,
        chain: str,
        holder: str,
        payee: str,
        amount: int,
        kind: FailureKind,
        reason: str,
        tx_id: Optional[str] = None,
    ) -> "SettlementReceipt":
        return cls(
            success=False,
            chain=chain,
            holder=holder,
            payee=payee,
            amount=amount,
            tx_id=tx_id,
            failure_kind=kind,
            reason=reason,
        )


class AuthorizationStatus(str, Enum):
    ADMITTED = "admitted"
    DENIED = "denied"
    CHARGE_FAILED = "charge_failed"


class AuthorizationResult(BaseModel):
    """What ComputeMeter.authorize hands back to the orchestration runtime."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: AuthorizationStatus
    requester: str
    compute_units: int = Field(..., ge=1)
    required: int = Field(..., ge=0, description="Price of the request in smallest units")
    balance: Optional[int] = Field(None, ge=0, description="Balance observed at the check step")
    shortfall: Optional[int] = Field(None, ge=1, description="required - balance, set only when denied")
    receipt: Optional[SettlementReceipt] = None
    failure_kind: Optional[FailureKind] = None
    error: Optional[Any] = Field(None, exclude=True, repr=False)

    @property
    def admitted(self) -> bool:
        return self.status is AuthorizationStatus.ADMITTED

    @property
    def denied(self) -> bool:
        return self.status is AuthorizationStatus.DENIED

    @property
    def charge_failed(self) -> bool:
        return self.status is AuthorizationStatus.CHARGE_FAILED

    def describe(self) -> str:
        """One-line, user-facing summary of the decision."""
        if self.admitted:
            return f"Admitted {self.compute_units} compute units for {self.required} (tx {self.receipt.tx_id if self.receipt else '-'})"
        if self.denied:
            return (
                f"Insufficient balance. Required: {self.required}, "
                f"Available: {self.balance}, Shortfall: {self.shortfall}"
            )
        kind = self.failure_kind.value if self.failure_kind else "unknown"
        return f"Charge of {self.required} failed ({kind}); compute not granted"
