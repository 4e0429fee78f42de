"""
Configuration from the environment (and a .env file in the working directory).

    FORGEPAY_CHAIN            solana | evm                    (default solana)
    FORGEPAY_RPC_URL          ledger endpoint                 (public default per chain)
    FORGEPAY_TOKEN_ADDRESS    SPL mint / ERC-20 contract      (ISAACX mint on solana)
    FORGEPAY_PRIVATE_KEY      signing secret                  (required to charge)
    FORGEPAY_TREASURY         payee address                   (default: signer)
    FORGEPAY_CHAIN_ID         EVM chain id                    (default Sepolia)
    FORGEPAY_UNIT_COST        smallest units per compute unit (default 1_000_000)
    FORGEPAY_RPC_TIMEOUT      seconds per RPC call            (default 10)
    FORGEPAY_CONFIRM_TIMEOUT  seconds to wait for settlement  (default 60)
    FORGEPAY_POLL_INTERVAL    seconds between status polls    (default 2)
    FORGEPAY_BALANCE_RETRIES  balance read retries            (default 2)
    FORGEPAY_SERIALIZE_REQUESTERS  true|false                 (default false)
"""

import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from forgepay.chains import CHAINS, ChainBackend, get_backend
from forgepay.chains.evm import SEPOLIA_CHAIN_ID
from forgepay.meter import ComputeMeter
from forgepay.pricing import COMPUTE_UNIT_COST, LinearPricing
from forgepay.wallet import ENV_PRIVATE_KEY, load_secret_from_env

ENV_PREFIX = "FORGEPAY_"


class MeterSettings(BaseModel):
    """Validated settings for one meter + backend."""

    chain: str = Field("solana", description="Ledger family: solana or evm")
    rpc_url: Optional[str] = Field(None, description="Ledger RPC endpoint")
    token_address: Optional[str] = Field(None, description="SPL mint or ERC-20 contract")
    treasury: Optional[str] = Field(None, description="Payee; defaults to the signer")
    chain_id: int = Field(SEPOLIA_CHAIN_ID, description="EVM only")
    unit_cost: int = Field(COMPUTE_UNIT_COST, gt=0, description="Smallest token units per compute unit")
    rpc_timeout: float = Field(10.0, gt=0)
    confirm_timeout: float = Field(60.0, gt=0)
    poll_interval: float = Field(2.0, gt=0)
    balance_retries: int = Field(2, ge=0)
    serialize_requesters: bool = False

    @field_validator("chain")
    @classmethod
    def _known_chain(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in CHAINS:
            raise ValueError(f"chain must be one of {CHAINS}")
        return value

    @field_validator("rpc_url", "token_address", "treasury")
    @classmethod
    def _blank_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


def _env_values(environ: Mapping[str, str]) -> Dict[str, str]:
    values = {}
    for name in MeterSettings.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw.strip():
            values[name] = raw.strip()
    return values


def load_settings(environ: Optional[Mapping[str, str]] = None) -> MeterSettings:
    """
    Read FORGEPAY_* settings. With no mapping given, loads .env from cwd
    (without overriding variables already set) and reads os.environ.

    Raises ValueError on invalid values.
    """
    if environ is None:
        load_dotenv(Path.cwd() / ".env", override=False)
        environ = os.environ
    try:
        return MeterSettings(**_env_values(environ))
    except ValidationError as e:
        raise ValueError(f"Invalid forgepay configuration: {e}") from e


def build_backend(settings: MeterSettings, secret: Optional[str] = None) -> ChainBackend:
    """Backend for `settings`. Secret defaults to FORGEPAY_PRIVATE_KEY."""
    secret = secret or load_secret_from_env(ENV_PRIVATE_KEY)
    kwargs = dict(
        treasury=settings.treasury,
        rpc_timeout=settings.rpc_timeout,
        confirm_timeout=settings.confirm_timeout,
        poll_interval=settings.poll_interval,
    )
    if settings.chain == "evm":
        kwargs["chain_id"] = settings.chain_id
    return get_backend(
        settings.chain,
        secret,
        token_address=settings.token_address,
        rpc_url=settings.rpc_url,
        **kwargs,
    )


def build_meter(settings: Optional[MeterSettings] = None, secret: Optional[str] = None) -> ComputeMeter:
    """ComputeMeter wired from settings (env by default) with linear pricing."""
    settings = settings or load_settings()
    return ComputeMeter(
        build_backend(settings, secret),
        pricing=LinearPricing(settings.unit_cost),
        balance_retries=settings.balance_retries,
        serialize_requesters=settings.serialize_requesters,
    )
