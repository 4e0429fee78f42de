"""
Ledger backends: Solana SPL (default) and EVM ERC-20.

Every backend honors the same contract: get_balance reads confirmed state,
charge returns a confirmed receipt or raises InsufficientFundsError,
SubmissionError or ConfirmationError. Add a chain by adding a module that
satisfies ChainBackend, not by subclassing.
"""

from typing import Optional, Protocol, runtime_checkable

from forgepay.schema import SettlementReceipt
from forgepay.wallet import EvmCredential, SolanaCredential, SecretInput

CHAINS = ("solana", "evm")


@runtime_checkable
class ChainBackend(Protocol):
    chain: str

    @property
    def treasury(self) -> str:
        ...

    def validate_identity(self, holder: str) -> str:
        ...

    def get_balance(self, holder: str) -> int:
        ...

    def charge(self, holder: str, amount: int) -> SettlementReceipt:
        ...

    def close(self) -> None:
        ...


def get_backend(
    chain: str,
    secret: SecretInput,
    token_address: Optional[str] = None,
    rpc_url: Optional[str] = None,
    **kwargs: object,
) -> ChainBackend:
    """
    Single entry point: build the backend for `chain` from raw secret material.

    Args:
        chain: "solana" or "evm"
        secret: signing key (see wallet.py for accepted formats)
        token_address: mint (Solana) or ERC-20 contract (EVM). Required for EVM.
        rpc_url: ledger endpoint; each backend has a public default
        **kwargs: passed to the backend (treasury, timeouts, chain_id, ...)
    """
    chain = (chain or "").strip().lower()
    if chain == "solana":
        from forgepay.chains.solana import ISAACX_TOKEN_ADDRESS, SolanaBackend

        return SolanaBackend(
            SolanaCredential.from_secret(secret),
            token_address=token_address or ISAACX_TOKEN_ADDRESS,
            rpc_url=rpc_url,
            **kwargs,
        )
    if chain == "evm":
        from forgepay.chains.evm import EvmBackend

        if not token_address:
            raise ValueError("EVM backend needs the ERC-20 token contract address")
        return EvmBackend(
            token_address,
            EvmCredential.from_secret(secret),
            rpc_url=rpc_url,
            **kwargs,
        )
    raise ValueError(f"Unknown chain {chain!r}; expected one of {CHAINS}")


__all__ = ["CHAINS", "ChainBackend", "get_backend"]
