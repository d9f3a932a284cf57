# subscription_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime


class SubscriptionCreate(BaseModel):
    plan_id: int
    gym_id: int


class SubscriptionRead(BaseModel):
    id: int
    user_id: int
    gym_id: int
    plan_id: int
    status: str
    source: str
    start_date: datetime
    end_date: datetime
    access_code: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GatewayOrderRead(BaseModel):
    id: str
    amount: int  # minor units
    currency: str
    receipt: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionCheckoutRead(BaseModel):
    subscription: SubscriptionRead
    order: GatewayOrderRead
    payment_id: int
    gateway_options: Dict[str, Any] = Field(default_factory=dict)


class AccessCodeCheck(BaseModel):
    valid: bool
    subscription: SubscriptionRead
