# settlement_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

from .payment_schema import PaymentRead


class SettlementCreate(BaseModel):
    gym_id: int


class SettlementProcess(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=1000)


class SettlementRead(BaseModel):
    id: int
    gym_id: int
    amount: float
    status: str
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SettlementDetailRead(SettlementRead):
    payments: List[PaymentRead] = Field(default_factory=list)


class UnsettledAmountRead(BaseModel):
    gym_id: int
    amount: float
    count: int
    payments: List[PaymentRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
