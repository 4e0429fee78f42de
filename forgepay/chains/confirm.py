"""
Bounded confirmation wait, shared by every backend.

Polls a status probe until it reports a final result or the deadline passes.
A deadline miss is always a ConfirmationError, never success.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from forgepay.errors import ChargeError, ConfirmationError, ConnectivityError, UnknownChainError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wait_for_confirmation(
    probe: Callable[[], Optional[T]],
    tx_id: str,
    max_wait: float = 60.0,
    step: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Poll `probe` until it returns non-None.

    probe() returns None while the tx is not yet confirmed (not indexed,
    pending) and may raise ChargeError for a definitive on-ledger failure,
    which propagates unchanged. A ConnectivityError or UnknownChainError
    from a single poll is tolerated until the deadline.
    """
    deadline = clock() + max_wait
    last_error: Optional[BaseException] = None
    while True:
        try:
            result = probe()
        except ChargeError:
            raise
        except (ConnectivityError, UnknownChainError) as e:
            last_error = e
            logger.debug("confirmation poll for %s failed: %s", tx_id, e)
            result = None
        if result is not None:
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            break
        sleep(min(step, remaining))
    raise ConfirmationError(
        f"Tx {tx_id} not confirmed after {max_wait}s; it may still settle. Re-check balance before retrying.",
        tx_id=tx_id,
        cause=last_error,
    )
