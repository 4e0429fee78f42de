"""
Tests for run_metered: work runs only after admission.
"""

from unittest.mock import MagicMock

import pytest

from forgepay.errors import ConfirmationError, FailureKind, MeteringUnavailableError, ConnectivityError
from forgepay.gate import ComputeRefused, run_metered
from forgepay.meter import ComputeMeter
from forgepay.pricing import LinearPricing

from conftest import REQUESTER, UNIT_COST, FakeLedger


def test_admitted_runs_work(meter):
    work = MagicMock(return_value="done")
    assert run_metered(meter, REQUESTER, 2, work) == "done"
    work.assert_called_once_with()


def test_denied_refuses_with_shortfall(meter):
    work = MagicMock()
    with pytest.raises(ComputeRefused) as excinfo:
        run_metered(meter, REQUESTER, 6, work)
    work.assert_not_called()
    assert excinfo.value.shortfall == 1_000_000
    assert "Insufficient balance" in str(excinfo.value)


def test_ambiguous_charge_refuses():
    ledger = FakeLedger({REQUESTER: 5_000_000}, charge_error=ConfirmationError("timeout", tx_id="0x1"))
    meter = ComputeMeter(ledger, LinearPricing(UNIT_COST))
    work = MagicMock()

    with pytest.raises(ComputeRefused) as excinfo:
        run_metered(meter, REQUESTER, 1, work)

    work.assert_not_called()
    assert excinfo.value.failure_kind is FailureKind.CONFIRMATION
    assert excinfo.value.shortfall is None


def test_metering_unavailable_propagates():
    ledger = FakeLedger(balance_error=ConnectivityError("down"))
    work = MagicMock()
    with pytest.raises(MeteringUnavailableError):
        run_metered(ComputeMeter(ledger), REQUESTER, 1, work)
    work.assert_not_called()


def test_work_errors_are_not_swallowed(meter, ledger):
    def work():
        raise ValueError("agent crashed")

    with pytest.raises(ValueError, match="agent crashed"):
        run_metered(meter, REQUESTER, 1, work)
    # the charge settled before the work ran
    assert ledger.balances[REQUESTER] == 4_000_000
