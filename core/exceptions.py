# core/exceptions.py
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class GymFlowError(Exception):
    """
    Base class for domain failures raised by the service layer.

    `retryable` tells the caller whether nothing was written and the same
    request can simply be sent again.
    """

    status_code: int = 400
    code: str = "error"
    retryable: bool = False

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.__class__.__name__
        super().__init__(self.detail)


class NotFound(GymFlowError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, detail: Optional[str] = None):
        self.entity = entity
        super().__init__(detail or f"{entity} not found")


class InvalidSignature(GymFlowError):
    """Gateway callback failed verification. The payment is now FAILED; do not blindly retry."""

    status_code = 400
    code = "invalid_signature"


class AlreadyProcessed(GymFlowError):
    """Internal marker: the payment was already completed. Callers receive the current state."""

    status_code = 200
    code = "already_processed"


class NoUnsettledPayments(GymFlowError):
    status_code = 400
    code = "no_unsettled_payments"


class GatewayUnavailable(GymFlowError):
    status_code = 502
    code = "gateway_unavailable"
    retryable = True


class UnsupportedDurationUnit(GymFlowError):
    status_code = 422
    code = "unsupported_duration_unit"


class InvalidStateTransition(GymFlowError):
    status_code = 409
    code = "invalid_state_transition"


class SettlementConflict(GymFlowError):
    status_code = 409
    code = "settlement_conflict"
    retryable = True


class AccessCodeUnavailable(GymFlowError):
    """Could not allocate a unique access code; the subscription was not created."""

    status_code = 503
    code = "access_code_unavailable"
    retryable = True


class SubscriptionAlreadyActive(GymFlowError):
    status_code = 409
    code = "subscription_already_active"


class SubscriptionNotActive(GymFlowError):
    status_code = 403
    code = "subscription_not_active"


# ============================================================
# ✅ FastAPI handler
# ============================================================
async def gymflow_error_handler(request: Request, exc: GymFlowError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "code": exc.code,
            "retryable": exc.retryable,
        },
    )
