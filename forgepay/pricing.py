"""
Pricing policies: compute units -> token amount (smallest units).

A policy is any object with `price(units) -> int` that is deterministic and
monotonically non-decreasing in units. The default is a fixed linear rate.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Tuple, runtime_checkable

# smallest token units charged per compute unit
COMPUTE_UNIT_COST = 1_000_000

BASIS_POINTS = 10_000


@runtime_checkable
class PricingPolicy(Protocol):
    def price(self, units: int) -> int:
        ...


def _check_units(units: int) -> None:
    if isinstance(units, bool) or not isinstance(units, int):
        raise TypeError(f"compute units must be an int, got {type(units).__name__}")
    if units < 0:
        raise ValueError(f"compute units must be >= 0, got {units}")


@dataclass(frozen=True)
class LinearPricing:
    """amount = units * unit_cost"""

    unit_cost: int = COMPUTE_UNIT_COST

    def __post_init__(self):
        if isinstance(self.unit_cost, bool) or not isinstance(self.unit_cost, int):
            raise TypeError("unit_cost must be an int (smallest token units)")
        if self.unit_cost <= 0:
            raise ValueError("unit_cost must be > 0")

    def price(self, units: int) -> int:
        _check_units(units)
        return units * self.unit_cost


@dataclass(frozen=True)
class TieredPricing:
    """
    Graduated tiers. Each tier is (up_to_units, unit_cost); units beyond the
    last bound are billed at `overflow_cost`.

    Example: tiers=((100, 1_000_000), (1000, 800_000)), overflow_cost=500_000
    bills the first 100 units at 1_000_000, the next 900 at 800_000 and the
    rest at 500_000. Cheaper marginal rates still never make a larger
    request cost less in total.
    """

    tiers: Tuple[Tuple[int, int], ...]
    overflow_cost: int

    def __post_init__(self):
        previous = 0
        for bound, cost in self.tiers:
            if bound <= previous:
                raise ValueError("tier bounds must be strictly increasing and > 0")
            if cost < 0:
                raise ValueError("tier unit cost must be >= 0")
            previous = bound
        if self.overflow_cost < 0:
            raise ValueError("overflow_cost must be >= 0")

    def price(self, units: int) -> int:
        _check_units(units)
        total = 0
        floor = 0
        for bound, cost in self.tiers:
            if units <= floor:
                return total
            billed = min(units, bound) - floor
            total += billed * cost
            floor = bound
        if units > floor:
            total += (units - floor) * self.overflow_cost
        return total


@dataclass(frozen=True)
class DiscountedPricing:
    """Wraps another policy with a fixed discount in basis points, rounded up."""

    base: PricingPolicy
    discount_bps: int

    def __post_init__(self):
        if not 0 <= self.discount_bps <= BASIS_POINTS:
            raise ValueError(f"discount_bps must be within 0..{BASIS_POINTS}")

    def price(self, units: int) -> int:
        gross = self.base.price(units)
        numerator = gross * (BASIS_POINTS - self.discount_bps)
        # ceil division on ints
        return -(-numerator // BASIS_POINTS)


def check_monotonic(policy: PricingPolicy, sample: Optional[Iterable[int]] = None) -> None:
    """
    Raise ValueError if `policy` ever prices more units lower, or is
    non-deterministic, over `sample` (default 0..1000).
    """
    units_seq = sorted(set(sample if sample is not None else range(0, 1001)))
    previous_units = None
    previous_price = None
    for units in units_seq:
        amount = policy.price(units)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValueError(f"price({units}) must be a non-negative int, got {amount!r}")
        if policy.price(units) != amount:
            raise ValueError(f"price({units}) is not deterministic")
        if previous_price is not None and amount < previous_price:
            raise ValueError(
                f"pricing is not monotonic: price({units})={amount} < price({previous_units})={previous_price}"
            )
        previous_units, previous_price = units, amount
