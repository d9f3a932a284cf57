# routes/payment.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool

from core.dependencies import get_reconciliation_service
from core.exceptions import InvalidSignature
from core.security import get_current_user
from models.models import User
from schemas.payment_schema import PaymentVerifyRequest, PaymentVerifyResponse, WebhookAck
from schemas.subscription_schema import SubscriptionRead
from services.reconciliation_service import ReconciliationService

router = APIRouter(prefix="/payments", tags=["Payments"])


# ==================================================================
#  ✅ Client confirmation after checkout
# ==================================================================
@router.post("/verify", response_model=PaymentVerifyResponse)
def verify_payment(
    data: PaymentVerifyRequest,
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    subscription = service.handle_payment_callback(
        data.gateway_order_id,
        data.gateway_payment_id,
        data.signature,
    )
    return PaymentVerifyResponse(
        message="Payment verified, subscription active",
        subscription=SubscriptionRead.model_validate(subscription),
    )


# ==================================================================
#  ✅ Gateway webhook (signed, processed asynchronously)
# ==================================================================
@router.post("/webhook", response_model=WebhookAck, status_code=status.HTTP_202_ACCEPTED)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    body = await request.body()
    if not body:
        raise InvalidSignature("Empty webhook body")
    data = await run_in_threadpool(service.receive_webhook, body, x_razorpay_signature)
    return WebhookAck(event=data.get("event"))
