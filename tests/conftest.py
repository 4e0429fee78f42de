"""
Shared fixtures: an in-memory ledger backend that behaves like a real one.

FakeLedger enforces balances atomically at charge time (the ledger is the
serialization point) and records every call so tests can assert on what the
gate did and did not do.
"""

import re
import threading
from typing import Dict, List, Optional, Tuple

import pytest

from forgepay.errors import InsufficientFundsError, InvalidIdentityError
from forgepay.meter import ComputeMeter
from forgepay.pricing import LinearPricing
from forgepay.schema import SettlementReceipt

REQUESTER = "alice_wallet"
TREASURY = "treasury_wallet"
UNIT_COST = 1_000_000

_VALID = re.compile(r"^[A-Za-z0-9_]+$")


class FakeLedger:
    """ChainBackend double with real balance decrement."""

    chain = "fake"

    def __init__(
        self,
        balances: Optional[Dict[str, int]] = None,
        balance_error: Optional[BaseException] = None,
        charge_error: Optional[BaseException] = None,
        balance_barrier: Optional[threading.Barrier] = None,
    ):
        self.balances: Dict[str, int] = dict(balances or {})
        self.balance_error = balance_error
        self.charge_error = charge_error
        self.balance_barrier = balance_barrier
        self.balance_calls: List[str] = []
        self.charge_calls: List[Tuple[str, int]] = []
        self.closed = False
        self._lock = threading.Lock()
        self._tx = 0

    @property
    def treasury(self) -> str:
        return TREASURY

    def validate_identity(self, holder: str) -> str:
        if not isinstance(holder, str) or not _VALID.match(holder):
            raise InvalidIdentityError(f"bad address {holder!r}")
        return holder

    def get_balance(self, holder: str) -> int:
        self.balance_calls.append(holder)
        if self.balance_error is not None:
            raise self.balance_error
        with self._lock:
            balance = self.balances.get(holder, 0)
        if self.balance_barrier is not None:
            self.balance_barrier.wait(timeout=5)
        return balance

    def charge(self, holder: str, amount: int) -> SettlementReceipt:
        with self._lock:
            self.charge_calls.append((holder, amount))
            if self.charge_error is not None:
                raise self.charge_error
            if self.balances.get(holder, 0) < amount:
                raise InsufficientFundsError(f"{holder} cannot cover {amount}")
            self.balances[holder] -= amount
            self.balances[TREASURY] = self.balances.get(TREASURY, 0) + amount
            self._tx += 1
            tx_id = f"tx{self._tx}"
        return SettlementReceipt.confirmed(self.chain, holder, TREASURY, amount, tx_id)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def ledger():
    return FakeLedger({REQUESTER: 5_000_000})


@pytest.fixture
def meter(ledger):
    return ComputeMeter(ledger, LinearPricing(UNIT_COST))
