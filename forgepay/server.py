"""
HTTP gate: 402 Payment Required in front of the meter.

POST /authorize {requester, compute_units}
    200 admitted (tx id in receipt)
    402 denied: balance below price (required, balance, shortfall)
    409 charge failed (failure_kind); ambiguous outcomes land here too
    503 metering unavailable (balance could not be read; retry later)
    400 invalid request or identity
    422 malformed body (e.g. compute_units not a JSON integer)
GET /price/{units}  required amount for a request
GET /health         chain, token and treasury this gate charges to

Run: forgepay serve  (or uvicorn with create_app(build_meter()))
"""

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictInt

from forgepay.errors import InvalidIdentityError, InvalidRequestError, MeteringUnavailableError
from forgepay.meter import ComputeMeter
from forgepay.schema import AuthorizationStatus

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    AuthorizationStatus.ADMITTED: 200,
    AuthorizationStatus.DENIED: 402,
    AuthorizationStatus.CHARGE_FAILED: 409,
}


class AuthorizeRequest(BaseModel):
    requester: str = Field(..., description="Chain-native address paying for the work")
    compute_units: StrictInt = Field(..., description="Billable units requested (>= 1); JSON integers only")


def _error(status_code: int, error: Exception, **extra) -> JSONResponse:
    body = {"error": str(error), "kind": getattr(getattr(error, "kind", None), "value", None)}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def create_app(meter: ComputeMeter) -> FastAPI:
    """App bound to one meter. Handlers are sync: RPC calls block a worker thread."""
    app = FastAPI(title="forgepay compute gate")
    app.state.meter = meter

    @app.get("/health")
    def health():
        backend = meter.backend
        return {
            "chain": backend.chain,
            "token": getattr(backend, "token_address", None),
            "treasury": backend.treasury,
        }

    @app.get("/price/{units}")
    def price(units: int):
        try:
            required = meter.price(units)
        except InvalidRequestError as e:
            return _error(400, e)
        return {"compute_units": units, "required": required}

    @app.post("/authorize")
    def authorize(req: AuthorizeRequest):
        try:
            result = meter.authorize(req.requester, req.compute_units)
        except (InvalidRequestError, InvalidIdentityError) as e:
            return _error(400, e)
        except MeteringUnavailableError as e:
            kind = e.cause_kind.value if e.cause_kind else None
            return _error(503, e, cause_kind=kind, retryable=e.retryable)
        print(f"[SERVER] {result.requester}: {result.describe()}")
        body = result.model_dump(mode="json")
        body["message"] = result.describe()
        return JSONResponse(status_code=_STATUS_CODES[result.status], content=body)

    return app
