"""
Tests for the forgepay CLI commands and exit codes.
"""

from unittest.mock import patch

import pytest

from forgepay import cli
from forgepay.errors import ConnectivityError
from forgepay.meter import ComputeMeter
from forgepay.pricing import LinearPricing

from conftest import REQUESTER, UNIT_COST, FakeLedger


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("FORGEPAY_UNIT_COST", "FORGEPAY_CHAIN"):
        monkeypatch.delenv(name, raising=False)


def _run(ledger, argv):
    meter = ComputeMeter(ledger, LinearPricing(UNIT_COST))
    with patch.object(cli, "build_meter", return_value=meter):
        return cli.main(argv)


def test_no_command_prints_usage(capsys):
    assert cli.main([]) == cli.EXIT_ERROR
    assert "forgepay CLI" in capsys.readouterr().out


def test_unknown_command(capsys):
    assert cli.main(["mint"]) == cli.EXIT_ERROR
    assert "Unknown command: mint" in capsys.readouterr().out


def test_price(isolated_env, monkeypatch, capsys):
    monkeypatch.setenv("FORGEPAY_UNIT_COST", "250")
    assert cli.main(["price", "4"]) == cli.EXIT_OK
    assert "require 1000" in capsys.readouterr().out


def test_price_rejects_non_integer(isolated_env, capsys):
    assert cli.main(["price", "two"]) == cli.EXIT_ERROR
    assert "must be an integer" in capsys.readouterr().out


def test_balance(capsys):
    ledger = FakeLedger({REQUESTER: 1234})
    assert _run(ledger, ["balance", REQUESTER]) == cli.EXIT_OK
    assert f"{REQUESTER}: 1234" in capsys.readouterr().out
    assert ledger.closed


def test_authorize_admitted(capsys):
    ledger = FakeLedger({REQUESTER: 5_000_000})
    assert _run(ledger, ["authorize", REQUESTER, "2"]) == cli.EXIT_OK
    assert "Admitted 2 compute units" in capsys.readouterr().out
    assert ledger.balances[REQUESTER] == 3_000_000
    assert ledger.closed


def test_authorize_denied(capsys):
    ledger = FakeLedger({REQUESTER: 1_000_000})
    assert _run(ledger, ["authorize", REQUESTER, "3"]) == cli.EXIT_REFUSED
    assert "Shortfall: 2000000" in capsys.readouterr().out
    assert ledger.charge_calls == []


def test_authorize_metering_unavailable(capsys):
    ledger = FakeLedger(balance_error=ConnectivityError("down"))
    assert _run(ledger, ["authorize", REQUESTER, "1"]) == cli.EXIT_ERROR
    assert "not a denial" in capsys.readouterr().out
    assert ledger.closed


def test_authorize_invalid_identity(capsys):
    ledger = FakeLedger()
    assert _run(ledger, ["authorize", "bad wallet", "1"]) == cli.EXIT_ERROR
    assert "Error" in capsys.readouterr().out
    assert ledger.balance_calls == []


def test_usage_errors():
    assert cli.main(["authorize", REQUESTER]) == cli.EXIT_ERROR
    assert cli.main(["balance"]) == cli.EXIT_ERROR


def test_balance_requires_signing_key(isolated_env, monkeypatch, capsys):
    monkeypatch.delenv("FORGEPAY_PRIVATE_KEY", raising=False)
    assert cli.main(["balance", "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"]) == cli.EXIT_ERROR
    assert "FORGEPAY_PRIVATE_KEY" in capsys.readouterr().out


def test_usage_mentions_signing_key(capsys):
    cli.main([])
    assert "need FORGEPAY_PRIVATE_KEY" in capsys.readouterr().out
