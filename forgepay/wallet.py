"""
Signing credentials: the one secret a ledger backend holds.

Key is loaded from FORGEPAY_PRIVATE_KEY (env) or a .env file in the working
directory. Never read/write a key file, never log or serialize the key.
A credential belongs to exactly one backend and is dropped by close().
"""

import json
import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount
from solders.keypair import Keypair
from solders.pubkey import Pubkey

ENV_PRIVATE_KEY = "FORGEPAY_PRIVATE_KEY"

SecretInput = Union[str, bytes, bytearray, list]


def load_secret_from_env(env_var: str = ENV_PRIVATE_KEY) -> str:
    """
    Read the signing secret from the environment (.env in cwd is loaded first,
    without overriding variables already set). Raises RuntimeError if unset.
    """
    load_dotenv(Path.cwd() / ".env", override=False)
    secret = os.getenv(env_var)
    if not secret or not secret.strip():
        raise RuntimeError(
            f"Set {env_var} in the environment (never commit it). "
            "EVM: 0x-prefixed hex key. Solana: base58 secret or the JSON byte array from a keypair file."
        )
    return secret.strip()


class _Credential:
    """Shared lifecycle: usable until close(), redacted in repr."""

    chain = ""

    def __init__(self):
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _require_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"{self.chain} signing credential has been released")

    def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        state = "released" if self._closed else self.address
        return f"<{type(self).__name__} {state} (secret redacted)>"

    def __reduce__(self):
        raise TypeError("signing credentials cannot be pickled")

    @property
    def address(self) -> str:
        raise NotImplementedError


class EvmCredential(_Credential):
    """secp256k1 key for account-model chains."""

    chain = "evm"

    def __init__(self, account: LocalAccount):
        super().__init__()
        self._account: Optional[LocalAccount] = account

    @classmethod
    def from_secret(cls, secret: SecretInput) -> "EvmCredential":
        if isinstance(secret, (bytes, bytearray)):
            return cls(Account.from_key(bytes(secret)))
        if not isinstance(secret, str):
            raise ValueError("EVM secret must be a hex string or 32 raw bytes")
        key = secret.strip()
        if key.startswith("0x"):
            key = key[2:]
        try:
            return cls(Account.from_key(key))
        except (ValueError, TypeError) as e:
            raise ValueError("EVM secret is not a valid private key") from e

    @property
    def address(self) -> str:
        self._require_open()
        return self._account.address

    def sign_transaction(self, tx: dict) -> bytes:
        """Sign a transaction dict. Returns the raw signed bytes, ready to send."""
        self._require_open()
        signed = self._account.sign_transaction(tx)
        return signed.raw_transaction

    def close(self) -> None:
        self._account = None
        super().close()


class SolanaCredential(_Credential):
    """ed25519 keypair for token-account-model chains."""

    chain = "solana"

    def __init__(self, keypair: Keypair):
        super().__init__()
        self._keypair: Optional[Keypair] = keypair

    @classmethod
    def from_secret(cls, secret: SecretInput) -> "SolanaCredential":
        """
        Accepts 64 secret bytes (or a 32-byte seed), the JSON byte array
        written by `solana-keygen`, or a base58 string.
        """
        try:
            if isinstance(secret, list):
                secret = bytes(secret)
            if isinstance(secret, str):
                text = secret.strip()
                if text.startswith("["):
                    secret = bytes(json.loads(text))
                else:
                    return cls(Keypair.from_base58_string(text))
            raw = bytes(secret)
            if len(raw) == 32:
                return cls(Keypair.from_seed(raw))
            if len(raw) != 64:
                raise ValueError(f"expected 32 or 64 secret bytes, got {len(raw)}")
            return cls(Keypair.from_bytes(raw))
        except (ValueError, TypeError) as e:
            raise ValueError("Solana secret is not a valid keypair") from e

    @property
    def pubkey(self) -> Pubkey:
        self._require_open()
        return self._keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.pubkey)

    @property
    def keypair(self) -> Keypair:
        """Signer for transaction construction. Only the owning backend calls this."""
        self._require_open()
        return self._keypair

    def close(self) -> None:
        self._keypair = None
        super().close()
