"""
Tests for the HTTP 402 gate.
"""

import pytest
from fastapi.testclient import TestClient

from forgepay.errors import ConnectivityError, SubmissionError
from forgepay.meter import ComputeMeter
from forgepay.pricing import LinearPricing
from forgepay.server import create_app

from conftest import REQUESTER, TREASURY, UNIT_COST, FakeLedger


def _client(ledger):
    return TestClient(create_app(ComputeMeter(ledger, LinearPricing(UNIT_COST))))


@pytest.fixture
def client(ledger):
    return _client(ledger)


def test_health(client):
    body = client.get("/health").json()
    assert body["chain"] == "fake"
    assert body["treasury"] == TREASURY


def test_price(client):
    assert client.get("/price/3").json() == {"compute_units": 3, "required": 3_000_000}


def test_price_rejects_zero(client):
    resp = client.get("/price/0")
    assert resp.status_code == 400
    assert resp.json()["kind"] == "invalid_request"


def test_admitted(client, ledger):
    resp = client.post("/authorize", json={"requester": REQUESTER, "compute_units": 3})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "admitted"
    assert body["receipt"]["tx_id"] == "tx1"
    assert "error" not in body
    assert ledger.balances[REQUESTER] == 2_000_000


def test_denied_is_402_with_shortfall(client, ledger):
    resp = client.post("/authorize", json={"requester": REQUESTER, "compute_units": 6})
    assert resp.status_code == 402
    body = resp.json()
    assert body["status"] == "denied"
    assert body["required"] == 6_000_000
    assert body["balance"] == 5_000_000
    assert body["shortfall"] == 1_000_000
    assert body["message"] == "Insufficient balance. Required: 6000000, Available: 5000000, Shortfall: 1000000"
    assert ledger.charge_calls == []


def test_charge_failed_is_409():
    client = _client(FakeLedger({REQUESTER: 5_000_000}, charge_error=SubmissionError("rejected")))
    resp = client.post("/authorize", json={"requester": REQUESTER, "compute_units": 1})
    assert resp.status_code == 409
    assert resp.json()["failure_kind"] == "submission"


def test_metering_unavailable_is_503():
    client = _client(FakeLedger(balance_error=ConnectivityError("down")))
    resp = client.post("/authorize", json={"requester": REQUESTER, "compute_units": 1})
    assert resp.status_code == 503
    body = resp.json()
    assert body["kind"] == "metering_unavailable"
    assert body["cause_kind"] == "connectivity"
    assert body["retryable"] is True


@pytest.mark.parametrize(
    "payload",
    [
        {"requester": REQUESTER, "compute_units": 0},
        {"requester": "not a wallet!", "compute_units": 1},
    ],
)
def test_bad_requests_are_400(client, ledger, payload):
    resp = client.post("/authorize", json=payload)
    assert resp.status_code == 400
    assert ledger.balance_calls == []


@pytest.mark.parametrize("units", [True, 3.0, "3"])
def test_non_integer_units_rejected_before_metering(client, ledger, units):
    resp = client.post("/authorize", json={"requester": REQUESTER, "compute_units": units})
    assert resp.status_code == 422
    assert ledger.balance_calls == []
    assert ledger.charge_calls == []
