"""
Account-model ledger backend: ERC-20 token on an EVM chain.

The holder's address is the account. The holder grants the meter's signer an
ERC-20 allowance (approve) once; each charge is a transferFrom(holder,
treasury, amount) signed by the meter's key. No API key; uses plain JSON-RPC.
"""

import logging
import threading
from typing import Optional

import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound
from web3.logs import DISCARD

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
from forgepay.wallet import EvmCredential

logger = logging.getLogger(__name__)

# Sepolia
SEPOLIA_RPC = "https://ethereum-sepolia-rpc.publicnode.com"
SEPOLIA_CHAIN_ID = 11155111

# transferFrom needs ~50-65k gas on standard tokens; estimate wins when higher
DEFAULT_GAS_LIMIT = 100_000

ERC20_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transferFrom",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
]

# Revert reasons (OpenZeppelin 4.x strings and 5.x custom error names) meaning
# the ledger refused for balance or allowance.
_FUNDS_REVERT_MARKERS = (
    "exceeds balance",
    "exceeds allowance",
    "insufficient allowance",
    "insufficient balance",
    "erc20insufficientbalance",
    "erc20insufficientallowance",
    "0xe450d38c",
    "0xfb8f41b2",
)

_TRANSPORT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


def _is_funds_revert(error: BaseException) -> bool:
    text = " ".join(str(part) for part in (error, getattr(error, "data", "") or "")).lower()
    return any(marker in text for marker in _FUNDS_REVERT_MARKERS)


class EvmBackend:
    """ChainBackend for ERC-20 tokens on account-model chains."""

    chain = "evm"

    def __init__(
        self,
        token_address: str,
        credential: EvmCredential,
        rpc_url: Optional[str] = None,
        treasury: Optional[str] = None,
        chain_id: int = SEPOLIA_CHAIN_ID,
        rpc_timeout: float = 10.0,
        confirm_timeout: float = 60.0,
        poll_interval: float = 2.0,
        confirmations: int = 1,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        w3: Optional[Web3] = None,
    ):
        if not Web3.is_address(token_address or ""):
            raise ValueError(f"Token contract is not a valid EVM address: {token_address!r}")
        if confirmations < 1:
            raise ValueError("confirmations must be >= 1")
        self.rpc_url = rpc_url or SEPOLIA_RPC
        self.chain_id = chain_id
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.confirmations = confirmations
        self.gas_limit = gas_limit
        self._credential = credential
        self._w3 = w3 or Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": rpc_timeout}))
        self._token = self._w3.eth.contract(
            address=Web3.to_checksum_address(token_address),
            abi=ERC20_ABI,
        )
        self.treasury = self.validate_identity(treasury or credential.address)
        # one nonce sequence per signer
        self._send_lock = threading.Lock()

    @property
    def token_address(self) -> str:
        return self._token.address

    @property
    def signer_address(self) -> str:
        return self._credential.address

    def validate_identity(self, holder: str) -> str:
        """Checksummed address, or InvalidIdentityError. No network."""
        if not isinstance(holder, str) or not Web3.is_address(holder.strip()):
            raise InvalidIdentityError(f"Not a valid EVM address: {holder!r}")
        return Web3.to_checksum_address(holder.strip())

    def get_balance(self, holder: str) -> int:
        address = self.validate_identity(holder)
        try:
            return int(self._token.functions.balanceOf(address).call(block_identifier="latest"))
        except _TRANSPORT_ERRORS as e:
            raise ConnectivityError(f"Cannot reach RPC {self.rpc_url}: {e}", cause=e) from e
        except Exception as e:
            raise UnknownChainError(f"balanceOf({address}) failed: {e}", cause=e) from e

    def allowance(self, holder: str) -> int:
        """Tokens the holder currently lets this backend's signer move."""
        address = self.validate_identity(holder)
        try:
            return int(self._token.functions.allowance(address, self.signer_address).call(block_identifier="latest"))
        except _TRANSPORT_ERRORS as e:
            raise ConnectivityError(f"Cannot reach RPC {self.rpc_url}: {e}", cause=e) from e
        except Exception as e:
            raise UnknownChainError(f"allowance({address}) failed: {e}", cause=e) from e

    def charge(self, holder: str, amount: int) -> SettlementReceipt:
        """
        Move `amount` from holder to treasury with transferFrom and wait for
        the receipt. Returns a confirmed receipt or raises a ChargeError.
        """
        source = self.validate_identity(holder)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidRequestError(f"charge amount must be a positive int, got {amount!r}")

        signer = self.signer_address
        transfer = self._token.functions.transferFrom(source, self.treasury, amount)

        with self._send_lock:
            try:
                # tokens that signal failure by returning false instead of reverting
                if transfer.call({"from": signer}, block_identifier="latest") is False:
                    raise InsufficientFundsError(f"Token refused transferFrom of {amount} from {source}")
                # estimate simulates the call, so a balance/allowance revert surfaces here
                estimate = transfer.estimate_gas({"from": signer})
                nonce = self._w3.eth.get_transaction_count(signer, "pending")
                tx = transfer.build_transaction(
                    {
                        "from": signer,
                        "chainId": self.chain_id,
                        "gas": max(self.gas_limit, estimate * 12 // 10),
                        "nonce": nonce,
                    }
                )
                raw = self._credential.sign_transaction(tx)
            except InsufficientFundsError:
                raise
            except ContractLogicError as e:
                if _is_funds_revert(e):
                    raise InsufficientFundsError(f"Ledger refused transferFrom of {amount} from {source}: {e}", cause=e) from e
                raise SubmissionError(f"transferFrom would revert: {e}", cause=e) from e
            except Exception as e:
                raise SubmissionError(f"Could not build or sign transfer: {e}", cause=e) from e

            tx_hash = Web3.to_hex(Web3.keccak(raw))
            try:
                self._w3.eth.send_raw_transaction(raw)
            except _TRANSPORT_ERRORS as e:
                # the node may have received it before the connection dropped
                raise ConfirmationError(
                    f"Send of {tx_hash} interrupted; outcome unknown: {e}", tx_id=tx_hash, cause=e
                ) from e
            except Exception as e:
                raise SubmissionError(f"Node rejected transaction {tx_hash}: {e}", cause=e) from e

        logger.info("sent transferFrom %s -> %s amount=%d tx=%s", source, self.treasury, amount, tx_hash)
        wait_for_confirmation(
            lambda: self._probe_receipt(tx_hash, source, amount),
            tx_hash,
            max_wait=self.confirm_timeout,
            step=self.poll_interval,
        )
        return SettlementReceipt.confirmed(self.chain, source, self.treasury, amount, tx_hash)

    def _probe_receipt(self, tx_hash: str, source: str, amount: int):
        try:
            receipt = self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except _TRANSPORT_ERRORS as e:
            raise ConnectivityError(str(e), cause=e) from e
        except Exception as e:
            raise UnknownChainError(str(e), cause=e) from e
        if receipt is None:
            return None
        if receipt.get("status") != 1:
            self._raise_not_moved(tx_hash, source, amount, "reverted on chain")
        try:
            if self.confirmations > 1:
                head = self._w3.eth.block_number
                if head - receipt["blockNumber"] + 1 < self.confirmations:
                    return None
            events = self._token.events.Transfer().process_receipt(receipt, errors=DISCARD)
        except _TRANSPORT_ERRORS as e:
            raise ConnectivityError(str(e), cause=e) from e
        except Exception as e:
            raise UnknownChainError(str(e), cause=e) from e
        if not any(self._is_charge_event(event, source, amount) for event in events):
            self._raise_not_moved(tx_hash, source, amount, "mined without a matching Transfer event")
        return receipt

    def _is_charge_event(self, event, source: str, amount: int) -> bool:
        args = event["args"]
        return args["from"] == source and args["to"] == self.treasury and args["value"] == amount

    def _raise_not_moved(self, tx_hash: str, source: str, amount: int, what: str) -> None:
        """A mined tx that moved nothing is final. Say why if we can tell."""
        try:
            short = self.get_balance(source) < amount or self.allowance(source) < amount
        except (ConnectivityError, UnknownChainError):
            short = False
        if short:
            raise InsufficientFundsError(f"Tx {tx_hash} {what}: balance or allowance below {amount}")
        raise SubmissionError(f"Tx {tx_hash} {what}; no funds moved")

    def close(self) -> None:
        """Release the signing credential. The backend is unusable afterwards."""
        self._credential.close()

    def __enter__(self) -> "EvmBackend":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
