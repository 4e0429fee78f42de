"""
forgepay CLI: operator commands around the compute gate.

Commands:
  forgepay balance <address>            confirmed token balance
  forgepay price <units>                token amount required for <units>
  forgepay authorize <address> <units>   run the gate once (charges on success)
  forgepay serve [host] [port]          start the HTTP 402 gate

Settings come from FORGEPAY_* env vars or .env in the working directory.
Every command except `price` builds the charging backend, so it needs
FORGEPAY_PRIVATE_KEY set, even the read-only `balance`.
"""

import sys
from typing import List, Optional

from forgepay.config import build_meter, load_settings
from forgepay.errors import ForgePayError, InvalidRequestError, MeteringUnavailableError
from forgepay.meter import required_amount
from forgepay.pricing import LinearPricing

EXIT_OK = 0
EXIT_REFUSED = 2
EXIT_ERROR = 1

USAGE = """forgepay CLI

Commands:
  forgepay balance <address>             confirmed token balance
  forgepay price <units>                 token amount required for <units>
  forgepay authorize <address> <units>   run the gate once (charges on success)
  forgepay serve [host] [port]           start the HTTP 402 gate

All commands except price need FORGEPAY_PRIVATE_KEY (the meter's signing key).

Examples:
  forgepay price 3
  forgepay authorize 9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin 3"""


def _units(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequestError(f"compute units must be an integer, got {raw!r}") from None


def balance_command(args: List[str]) -> int:
    if len(args) != 1:
        print("Usage: forgepay balance <address>")
        return EXIT_ERROR
    meter = build_meter()
    try:
        amount = meter.backend.get_balance(args[0])
    finally:
        meter.backend.close()
    print(f"[METER] {args[0]}: {amount}")
    return EXIT_OK


def price_command(args: List[str]) -> int:
    if len(args) != 1:
        print("Usage: forgepay price <units>")
        return EXIT_ERROR
    settings = load_settings()
    required = required_amount(LinearPricing(settings.unit_cost), _units(args[0]))
    print(f"[METER] {args[0]} compute units require {required} (unit cost {settings.unit_cost})")
    return EXIT_OK


def authorize_command(args: List[str]) -> int:
    if len(args) != 2:
        print("Usage: forgepay authorize <address> <units>")
        return EXIT_ERROR
    requester, units = args[0], _units(args[1])
    meter = build_meter()
    try:
        result = meter.authorize(requester, units)
    except MeteringUnavailableError as e:
        print(f"[METER] Could not check balance (not a denial): {e}")
        return EXIT_ERROR
    finally:
        meter.backend.close()
    print(f"[METER] {result.describe()}")
    return EXIT_OK if result.admitted else EXIT_REFUSED


def serve_command(args: List[str]) -> int:
    import uvicorn

    from forgepay.server import create_app

    host = args[0] if len(args) > 0 else "0.0.0.0"
    port = int(args[1]) if len(args) > 1 else 8000
    meter = build_meter()
    print(f"[SERVER] Gate on {meter.backend.chain}, treasury {meter.backend.treasury}")
    try:
        uvicorn.run(create_app(meter), host=host, port=port)
    finally:
        meter.backend.close()
    return EXIT_OK


COMMANDS = {
    "balance": balance_command,
    "price": price_command,
    "authorize": authorize_command,
    "serve": serve_command,
}


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] not in COMMANDS:
        if argv:
            print(f"Unknown command: {argv[0]}")
        print(USAGE)
        return EXIT_ERROR
    try:
        return COMMANDS[argv[0]](argv[1:])
    except (ForgePayError, ValueError, RuntimeError) as e:
        print(f"[METER] Error: {e}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
