# models/models.py
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Relationship
from pydantic import EmailStr


def utcnow() -> datetime:
    """Naive UTC timestamp; datetime columns are plain DateTime and store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================
# ENUMS
# ============================================================
class UserRole(str, Enum):
    USER = "user"
    OWNER = "owner"
    ADMIN = "admin"


class DurationUnit(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SubscriptionSource(str, Enum):
    APP = "app"  # paid through the payment gateway
    MANUAL = "manual"  # cash / counter
    WHATSAPP = "whatsapp"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"


class JobStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    FAILED = "failed"


# ============================================================
# USER
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str = Field(max_length=100)
    email: EmailStr = Field(index=True, max_length=100, nullable=False, unique=True)
    mobile_number: Optional[str] = Field(default=None, max_length=20)
    role: str = Field(default=UserRole.USER.value, max_length=20, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    subscriptions: List["Subscription"] = Relationship(back_populates="user")


# ============================================================
# GYM
# ============================================================
class Gym(SQLModel, table=True):
    __tablename__ = "gym"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    owner_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    plans: List["Plan"] = Relationship(back_populates="gym")
    settlements: List["Settlement"] = Relationship(back_populates="gym")


# ============================================================
# PLAN (gym subscription plan)
# ============================================================
class Plan(SQLModel, table=True):
    __tablename__ = "plan"

    id: Optional[int] = Field(default=None, primary_key=True)
    gym_id: int = Field(foreign_key="gym.id", nullable=False, index=True)
    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    price: float = Field(default=0.0)
    duration_value: int = Field(default=1, description="How many duration units one purchase buys")
    duration_unit: str = Field(default=DurationUnit.MONTH.value, max_length=10)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    gym: Optional["Gym"] = Relationship(back_populates="plans")
    subscriptions: List["Subscription"] = Relationship(back_populates="plan")


# ============================================================
# SUBSCRIPTION
# ============================================================
class Subscription(SQLModel, table=True):
    __tablename__ = "subscription"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    gym_id: int = Field(foreign_key="gym.id", nullable=False, index=True)
    plan_id: int = Field(foreign_key="plan.id", nullable=False, index=True)

    status: str = Field(default=SubscriptionStatus.PENDING.value, max_length=20, index=True)
    source: str = Field(default=SubscriptionSource.APP.value, max_length=20, index=True)
    start_date: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    end_date: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    access_code: str = Field(max_length=32, unique=True, index=True, nullable=False)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    user: Optional["User"] = Relationship(back_populates="subscriptions")
    plan: Optional["Plan"] = Relationship(back_populates="subscriptions")
    payment: Optional["Payment"] = Relationship(
        back_populates="subscription",
        sa_relationship_kwargs={"uselist": False}
    )


# ============================================================
# PAYMENT
# ============================================================
class Payment(SQLModel, table=True):
    __tablename__ = "payment"

    id: Optional[int] = Field(default=None, primary_key=True)
    subscription_id: int = Field(foreign_key="subscription.id", nullable=False, unique=True, index=True)

    amount: float = Field(default=0.0)
    currency: str = Field(default="INR", max_length=3)

    gateway_order_id: str = Field(max_length=255, unique=True, index=True, nullable=False)
    gateway_payment_id: Optional[str] = Field(default=None, max_length=255, index=True)
    gateway_signature: Optional[str] = Field(default=None, max_length=255)

    status: str = Field(default=PaymentStatus.PENDING.value, max_length=20, index=True)
    failure_reason: Optional[str] = Field(default=None, max_length=255)

    settlement_id: Optional[int] = Field(default=None, foreign_key="settlement.id", index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    subscription: Optional["Subscription"] = Relationship(back_populates="payment")
    settlement: Optional["Settlement"] = Relationship(back_populates="payments")


# ============================================================
# SETTLEMENT (payout batch for one gym)
# ============================================================
class Settlement(SQLModel, table=True):
    __tablename__ = "settlement"

    id: Optional[int] = Field(default=None, primary_key=True)
    gym_id: int = Field(foreign_key="gym.id", nullable=False, index=True)
    amount: float = Field(default=0.0)
    status: str = Field(default=SettlementStatus.PENDING.value, max_length=20, index=True)
    transaction_id: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=1000)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    processed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    gym: Optional["Gym"] = Relationship(back_populates="settlements")
    payments: List["Payment"] = Relationship(back_populates="settlement")


# ============================================================
# AUDIT LOG (append-only)
# ============================================================
class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: str = Field(max_length=64, unique=True, index=True)
    action: str = Field(max_length=100, index=True)
    entity: str = Field(max_length=50, index=True)
    entity_id: str = Field(max_length=64)
    actor_id: Optional[str] = Field(default=None, max_length=64, index=True)
    gym_id: Optional[int] = Field(default=None, index=True)
    details: str = Field(default="{}")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


# ============================================================
# NOTIFICATION (in-app feed)
# ============================================================
class Notification(SQLModel, table=True):
    __tablename__ = "notification"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: str = Field(max_length=64, unique=True, index=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    event: str = Field(max_length=50, index=True)
    title: str = Field(max_length=200)
    message: str = Field(max_length=1000)
    payload: str = Field(default="{}")
    is_read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


# ============================================================
# QUEUE JOB (durable background queue)
# ============================================================
class QueueJob(SQLModel, table=True):
    __tablename__ = "queue_job"

    id: Optional[int] = Field(default=None, primary_key=True)
    queue: str = Field(max_length=50, index=True)
    payload: str = Field()
    status: str = Field(default=JobStatus.QUEUED.value, max_length=20, index=True)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    available_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)
    locked_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    last_error: Optional[str] = None
    failed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "User",
    "Gym",
    "Plan",
    "Subscription",
    "Payment",
    "Settlement",
    "AuditLog",
    "Notification",
    "QueueJob",
    "UserRole",
    "DurationUnit",
    "SubscriptionStatus",
    "SubscriptionSource",
    "PaymentStatus",
    "SettlementStatus",
    "JobStatus",
    "utcnow",
]
