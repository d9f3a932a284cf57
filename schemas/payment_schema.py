# payment_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime

from .subscription_schema import SubscriptionRead


# ---------------------------
# Payment
# ---------------------------
class PaymentRead(BaseModel):
    id: int
    subscription_id: int
    amount: float
    currency: str
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    status: str
    failure_reason: Optional[str] = None
    settlement_id: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Client-side confirmation (checkout handler response)
# ---------------------------
class PaymentVerifyRequest(BaseModel):
    gateway_order_id: str = Field(..., max_length=255)
    gateway_payment_id: str = Field(..., max_length=255)
    signature: str = Field(..., max_length=255)


class PaymentVerifyResponse(BaseModel):
    message: str
    subscription: SubscriptionRead


class WebhookAck(BaseModel):
    status: str = "queued"
    event: Optional[str] = None
