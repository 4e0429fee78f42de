"""
Runtime-side helpers: run work only once the meter admits it.

The orchestration runtime calls run_metered() around each billable step. A
refusal is raised as ComputeRefused with a user-facing message (including
the shortfall when the balance was too low).
"""

from typing import Callable, Optional, TypeVar

from forgepay.errors import FailureKind
from forgepay.meter import ComputeMeter
from forgepay.schema import AuthorizationResult

T = TypeVar("T")


class ComputeRefused(Exception):
    """The meter did not admit the request; the work was not run."""

    def __init__(self, result: AuthorizationResult):
        super().__init__(result.describe())
        self.result = result

    @property
    def shortfall(self) -> Optional[int]:
        return self.result.shortfall

    @property
    def failure_kind(self) -> Optional[FailureKind]:
        return self.result.failure_kind


def run_metered(meter: ComputeMeter, requester: str, units: int, work: Callable[[], T]) -> T:
    """
    Authorize `units` for `requester`, then call `work()`.

    Raises ComputeRefused when denied or when the charge failed. Errors from
    authorize itself (invalid request/identity, metering unavailable)
    propagate unchanged. Exceptions from work() are not caught: the charge
    has already settled and is not refunded here.
    """
    result = meter.authorize(requester, units)
    if not result.admitted:
        raise ComputeRefused(result)
    return work()
