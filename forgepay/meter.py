"""
ComputeMeter: the token gate in front of the orchestration runtime.

Per request: price -> balance check -> (denied | charge -> (admitted | charge failed)).

Only a confirmed charge admits work. The balance read is advisory (it may be
stale); the ledger's own settlement of the charge is the authoritative
test-and-transfer, so a charge failure of any kind, including an ambiguous
confirmation timeout, is reported as CHARGE_FAILED and never as admitted.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from forgepay.chains import ChainBackend
from forgepay.errors import (
    ConnectivityError,
    FailureKind,
    ForgePayError,
    InvalidRequestError,
    MeteringUnavailableError,
    UnknownChainError,
)
from forgepay.pricing import LinearPricing, PricingPolicy
from forgepay.schema import AuthorizationResult, AuthorizationStatus, SettlementReceipt

logger = logging.getLogger(__name__)


def required_amount(pricing: PricingPolicy, units: int) -> int:
    """Required token amount for `units`. Raises InvalidRequestError for units < 1."""
    if isinstance(units, bool) or not isinstance(units, int):
        raise InvalidRequestError(f"compute units must be an int, got {type(units).__name__}")
    if units < 1:
        raise InvalidRequestError(f"compute units must be >= 1, got {units}")
    required = pricing.price(units)
    if required <= 0:
        raise InvalidRequestError(f"{units} compute units price to {required}; zero-cost requests are not metered")
    return required


class _RequesterLocks:
    """Exclusive lock per requester, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ComputeMeter:
    """
    Gate compute work on a token payment.

    Owns one backend and one pricing policy. Stateless across calls, so safe
    to call concurrently. With serialize_requesters=True, calls for the same
    requester are admitted one at a time (ordering only; the ledger still
    decides).
    """

    def __init__(
        self,
        backend: ChainBackend,
        pricing: Optional[PricingPolicy] = None,
        balance_retries: int = 0,
        retry_backoff: float = 0.5,
        serialize_requesters: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if balance_retries < 0:
            raise ValueError("balance_retries must be >= 0")
        self.backend = backend
        self.pricing = pricing or LinearPricing()
        self.balance_retries = balance_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._locks = _RequesterLocks() if serialize_requesters else None

    def price(self, units: int) -> int:
        return required_amount(self.pricing, units)

    def authorize(self, requester: str, units: int) -> AuthorizationResult:
        """
        Decide whether `requester` may run `units` of compute, charging for it.

        Returns an AuthorizationResult (ADMITTED, DENIED with shortfall, or
        CHARGE_FAILED with the failure kind).

        Raises:
            InvalidRequestError: units is not a positive int
            InvalidIdentityError: requester is not an address on this chain (no RPC made)
            MeteringUnavailableError: the balance could not be read
        """
        required = self.price(units)
        identity = self.backend.validate_identity(requester)
        if self._locks is None:
            return self._decide(identity, units, required)
        with self._locks.hold(identity):
            return self._decide(identity, units, required)

    def _decide(self, requester: str, units: int, required: int) -> AuthorizationResult:
        balance = self._read_balance(requester)
        if balance < required:
            shortfall = required - balance
            logger.info(
                "denied %s: %d units need %d, balance %d, shortfall %d",
                requester, units, required, balance, shortfall,
            )
            return AuthorizationResult(
                status=AuthorizationStatus.DENIED,
                requester=requester,
                compute_units=units,
                required=required,
                balance=balance,
                shortfall=shortfall,
            )

        try:
            receipt = self.backend.charge(requester, required)
        except ForgePayError as e:
            return self._charge_failed(requester, units, required, balance, e)
        except Exception as e:
            wrapped = UnknownChainError(f"charge raised {type(e).__name__}: {e}", cause=e)
            return self._charge_failed(requester, units, required, balance, wrapped)

        if not isinstance(receipt, SettlementReceipt) or not receipt.success:
            kind = getattr(receipt, "failure_kind", None) or FailureKind.UNKNOWN
            logger.warning("charge for %s returned unsuccessful receipt (%s)", requester, kind.value)
            return AuthorizationResult(
                status=AuthorizationStatus.CHARGE_FAILED,
                requester=requester,
                compute_units=units,
                required=required,
                balance=balance,
                receipt=receipt if isinstance(receipt, SettlementReceipt) else None,
                failure_kind=kind,
            )

        logger.info("admitted %s: %d units charged %d (tx %s)", requester, units, required, receipt.tx_id)
        return AuthorizationResult(
            status=AuthorizationStatus.ADMITTED,
            requester=requester,
            compute_units=units,
            required=required,
            balance=balance,
            receipt=receipt,
        )

    def _charge_failed(
        self, requester: str, units: int, required: int, balance: int, error: ForgePayError
    ) -> AuthorizationResult:
        logger.warning("charge failed for %s (%s): %s", requester, error.kind.value, error)
        receipt = SettlementReceipt.failed(
            self.backend.chain,
            requester,
            self.backend.treasury,
            required,
            error.kind,
            str(error),
            tx_id=getattr(error, "tx_id", None),
        )
        return AuthorizationResult(
            status=AuthorizationStatus.CHARGE_FAILED,
            requester=requester,
            compute_units=units,
            required=required,
            balance=balance,
            receipt=receipt,
            failure_kind=error.kind,
            error=error,
        )

    def _read_balance(self, requester: str) -> int:
        attempt = 0
        while True:
            try:
                balance = self.backend.get_balance(requester)
            except ConnectivityError as e:
                if attempt < self.balance_retries:
                    delay = self.retry_backoff * (2 ** attempt)
                    attempt += 1
                    logger.info("balance read for %s failed (%s); retry %d in %.2fs", requester, e, attempt, delay)
                    self._sleep(delay)
                    continue
                logger.warning("metering unavailable for %s: %s", requester, e)
                raise MeteringUnavailableError(f"Could not read balance of {requester}: {e}", cause=e) from e
            except Exception as e:
                logger.warning("metering unavailable for %s: %s", requester, e)
                raise MeteringUnavailableError(f"Could not read balance of {requester}: {e}", cause=e) from e
            if isinstance(balance, bool) or not isinstance(balance, int) or balance < 0:
                raise MeteringUnavailableError(f"Backend returned an invalid balance {balance!r} for {requester}")
            return balance
