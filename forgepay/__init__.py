"""
forgepay: token-gated compute metering for agent orchestration.

Each unit of orchestration work is paid for with an on-chain token:
- Price the request (pluggable pricing policy)
- Check the requester's confirmed balance
- Charge it to the treasury and admit the work only once the ledger confirms

Backends: Solana SPL tokens (default) and EVM ERC-20 tokens.
"""

__version__ = "0.1.0"

from forgepay.chains import ChainBackend, get_backend
from forgepay.config import MeterSettings, build_meter, load_settings
from forgepay.errors import (
    ChargeError,
    ConfirmationError,
    ConnectivityError,
    FailureKind,
    ForgePayError,
    InsufficientFundsError,
    InvalidIdentityError,
    InvalidRequestError,
    MeteringUnavailableError,
    SubmissionError,
    UnknownChainError,
)
from forgepay.gate import ComputeRefused, run_metered
from forgepay.meter import ComputeMeter
from forgepay.pricing import COMPUTE_UNIT_COST, DiscountedPricing, LinearPricing, PricingPolicy, TieredPricing
from forgepay.schema import AuthorizationResult, AuthorizationStatus, SettlementReceipt

__all__ = [
    "__version__",
    "ChainBackend",
    "get_backend",
    "MeterSettings",
    "build_meter",
    "load_settings",
    "ComputeMeter",
    "ComputeRefused",
    "run_metered",
    "PricingPolicy",
    "LinearPricing",
    "TieredPricing",
    "DiscountedPricing",
    "COMPUTE_UNIT_COST",
    "AuthorizationResult",
    "AuthorizationStatus",
    "SettlementReceipt",
    "FailureKind",
    "ForgePayError",
    "InvalidRequestError",
    "InvalidIdentityError",
    "ConnectivityError",
    "UnknownChainError",
    "ChargeError",
    "InsufficientFundsError",
    "SubmissionError",
    "ConfirmationError",
    "MeteringUnavailableError",
]
