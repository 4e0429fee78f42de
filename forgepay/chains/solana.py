"""
Token-account-model ledger backend: SPL token on Solana.

A holder's balance lives in its associated token account (ATA), derived from
the holder's wallet address and the token mint. The holder approves the
meter's keypair as delegate on that ATA once; each charge is an SPL Transfer
from the holder's ATA to the treasury's ATA, signed by the delegate, which
also pays the network fee.
"""

import logging
import re
from typing import Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import TransferParams, get_associated_token_address, transfer

from forgepay.chains.confirm import wait_for_confirmation
from forgepay.errors import (
    ConfirmationError,
    ConnectivityError,
    InsufficientFundsError,
    InvalidIdentityError,
    InvalidRequestError,
    SubmissionError,
    UnknownChainError,
)
from forgepay.schema import SettlementReceipt
from forgepay.wallet import SolanaCredential

logger = logging.getLogger(__name__)

SOLANA_MAINNET_RPC = "https://api.mainnet-beta.solana.com"
# $ISAACX
ISAACX_TOKEN_ADDRESS = "C19Q2Mvr1icQVxQJWpDTVDJjLTzAcXbUt3pBmBsYpump"

# SPL token program errors: 0x1 InsufficientFunds (also raised when the
# delegated amount is too low), 0x4 OwnerMismatch (signer is not a delegate).
# Fee-payer shortfalls ("insufficient funds for fee") are the operator's, not
# the holder's, and must not match.
_FUNDS_ERROR_CODES = (1, 4)

_FUNDS_ERROR_PATTERNS = (
    re.compile(r"custom program error: 0x[14]\b"),
    re.compile(r"custom\([14]\)"),
    re.compile(r"program log: error: insufficient funds"),
    re.compile(r"program log: error: owner does not match"),
)

_TRANSPORT_ERRORS = (SolanaRpcException, httpx.HTTPError)

_SETTLED = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


def _custom_code(err: object):
    """Custom program error code from a structured instruction error, if any."""
    for _ in range(3):
        if err is None:
            return None
        code = getattr(err, "code", None)
        if isinstance(code, int) and not isinstance(code, bool):
            return code
        err = getattr(err, "err", None)
    return None


def _is_funds_error(error: object) -> bool:
    parts = [str(error)]
    data = getattr(error, "data", None)
    if data is None and getattr(error, "args", None):
        data = getattr(error.args[0], "data", None)
    logs = getattr(data, "logs", None) if data is not None else None
    if logs:
        parts.extend(logs)
    err = getattr(data, "err", None) if data is not None else None
    for candidate in (error, err):
        code = _custom_code(candidate)
        if code is not None:
            return code in _FUNDS_ERROR_CODES
    if err is not None:
        parts.append(str(err))
    text = " ".join(parts).lower()
    return any(pattern.search(text) for pattern in _FUNDS_ERROR_PATTERNS)


class SolanaBackend:
    """ChainBackend for SPL tokens."""

    chain = "solana"

    def __init__(
        self,
        credential: SolanaCredential,
        token_address: str = ISAACX_TOKEN_ADDRESS,
        rpc_url: Optional[str] = None,
        treasury: Optional[str] = None,
        rpc_timeout: float = 10.0,
        confirm_timeout: float = 60.0,
        poll_interval: float = 2.0,
        client: Optional[Client] = None,
    ):
        try:
            self.mint = Pubkey.from_string(token_address)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Token mint is not a valid Solana address: {token_address!r}") from e
        self.rpc_url = rpc_url or SOLANA_MAINNET_RPC
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self._credential = credential
        self._client = client or Client(self.rpc_url, commitment=Confirmed, timeout=rpc_timeout)
        self._treasury = self._pubkey(treasury or credential.address)

    @property
    def treasury(self) -> str:
        return str(self._treasury)

    @property
    def token_address(self) -> str:
        return str(self.mint)

    def _pubkey(self, holder: str) -> Pubkey:
        if not isinstance(holder, str):
            raise InvalidIdentityError(f"Not a valid Solana address: {holder!r}")
        try:
            return Pubkey.from_string(holder.strip())
        except ValueError as e:
            raise InvalidIdentityError(f"Not a valid Solana address: {holder!r}", cause=e) from e

    def validate_identity(self, holder: str) -> str:
        """Canonical base58 address, or InvalidIdentityError. No network."""
        return str(self._pubkey(holder))

    def token_account(self, holder: str) -> str:
        """Associated token account of `holder` for the configured mint."""
        return str(get_associated_token_address(self._pubkey(holder), self.mint))

    def get_balance(self, holder: str) -> int:
        """
        Confirmed token balance of holder's ATA. A holder without an ATA
        holds zero tokens.
        """
        owner = self._pubkey(holder)
        ata = get_associated_token_address(owner, self.mint)
        try:
            resp = self._client.get_account_info_json_parsed(ata, commitment=Confirmed)
        except _TRANSPORT_ERRORS as e:
            raise ConnectivityError(f"Cannot reach RPC {self.rpc_url}: {e}", cause=e) from e
        except Exception as e:
            raise UnknownChainError(f"getAccountInfo({ata}) failed: {e}", cause=e) from e

        account = resp.value
        if account is None:
            return 0
        parsed = getattr(account.data, "parsed", None)
        try:
            info = parsed["info"]
            if info["mint"] != str(self.mint):
                raise UnknownChainError(f"{ata} holds mint {info['mint']}, expected {self.mint}")
            return int(info["tokenAmount"]["amount"])
        except (TypeError, KeyError, ValueError) as e:
            raise UnknownChainError(f"{ata} is not an SPL token account", cause=e) from e

    def charge(self, holder: str, amount: int) -> SettlementReceipt:
        """
        Transfer `amount` from holder's ATA to the treasury ATA and wait for
        confirmed commitment. Returns a confirmed receipt or raises a ChargeError.
        """
        owner = self._pubkey(holder)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidRequestError(f"charge amount must be a positive int, got {amount!r}")

        try:
            keypair = self._credential.keypair
            ix = transfer(
                TransferParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=get_associated_token_address(owner, self.mint),
                    dest=get_associated_token_address(self._treasury, self.mint),
                    owner=keypair.pubkey(),
                    amount=amount,
                )
            )
            latest = self._client.get_latest_blockhash(Confirmed).value
            message = Message.new_with_blockhash([ix], keypair.pubkey(), latest.blockhash)
            tx = Transaction([keypair], message, latest.blockhash)
        except Exception as e:
            raise SubmissionError(f"Could not build or sign transfer: {e}", cause=e) from e

        signature = tx.signatures[0]
        sig_str = str(signature)
        try:
            self._client.send_transaction(tx, opts=TxOpts(skip_confirmation=True, preflight_commitment=Confirmed))
        except RPCException as e:
            # preflight simulation rejected it; nothing was broadcast
            if _is_funds_error(e):
                raise InsufficientFundsError(f"Ledger refused transfer of {amount} from {owner}: {e}", cause=e) from e
            raise SubmissionError(f"Transfer rejected at preflight: {e}", cause=e) from e
        except _TRANSPORT_ERRORS as e:
            raise ConfirmationError(
                f"Send of {sig_str} interrupted; outcome unknown: {e}", tx_id=sig_str, cause=e
            ) from e
        except Exception as e:
            raise SubmissionError(f"Could not send transfer: {e}", cause=e) from e

        logger.info("sent SPL transfer %s -> %s amount=%d sig=%s", owner, self._treasury, amount, sig_str)
        wait_for_confirmation(
            lambda: self._probe_signature(signature, latest.last_valid_block_height),
            sig_str,
            max_wait=self.confirm_timeout,
            step=self.poll_interval,
        )
        return SettlementReceipt.confirmed(self.chain, str(owner), self.treasury, amount, sig_str)

    def _probe_signature(self, signature, last_valid_block_height: int):
        try:
            status = self._client.get_signature_statuses([signature]).value[0]
            # a tx whose blockhash expired can never land
            expired = status is None and self._client.get_block_height(Confirmed).value > last_valid_block_height
        except _TRANSPORT_ERRORS as e:
            raise ConnectivityError(str(e), cause=e) from e
        except Exception as e:
            raise UnknownChainError(str(e), cause=e) from e
        if status is None:
            if expired:
                raise SubmissionError(f"Transfer {signature} expired before landing; no funds moved")
            return None
        if status.err is not None:
            if _is_funds_error(status.err):
                raise InsufficientFundsError(f"Transfer {signature} failed on chain: {status.err}")
            raise SubmissionError(f"Transfer {signature} failed on chain: {status.err}")
        if status.confirmation_status in _SETTLED:
            return status
        return None

    def close(self) -> None:
        """Release the signing credential. The backend is unusable afterwards."""
        self._credential.close()

    def __enter__(self) -> "SolanaBackend":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
