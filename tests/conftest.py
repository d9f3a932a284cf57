import hashlib
import hmac
import os
import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

# Settings are loaded at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("QUEUE_WORKERS_ENABLED", "false")

import pytest
from sqlmodel import Session

from core.database import create_db_and_tables, create_db_engine
from models.models import (
    Gym,
    Payment,
    PaymentStatus,
    Plan,
    Subscription,
    SubscriptionSource,
    SubscriptionStatus,
    User,
    UserRole,
)
from services.audit_service import AuditService
from services.job_queue import JobQueue
from services.notification_service import NotificationService
from services.payment_gateway import GatewayOrder, RazorpayGateway
from services.reconciliation_service import ReconciliationService
from services.settlement_service import SettlementService
from services.subscription_service import SubscriptionService

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class Clock:
    """Settable clock handed to services instead of utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway(RazorpayGateway):
    """Real signature checks, in-memory orders."""

    def __init__(self):
        super().__init__("rzp_test_key", KEY_SECRET, WEBHOOK_SECRET)
        self.orders: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None

    def create_order(self, amount_minor, receipt_id, currency, notes=None):
        if self.fail_with is not None:
            raise self.fail_with
        order = GatewayOrder(
            id=f"order_test_{len(self.orders) + 1}",
            amount=amount_minor,
            currency=currency,
            receipt=receipt_id,
        )
        self.orders.append({"order": order, "notes": notes})
        return order


class FakeEmailService:
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.fail_with: Optional[Exception] = None

    def send_notification_email(self, to_email: str, title: str, message: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"to": to_email, "title": title, "message": message})


def sign(order_id: str, payment_id: str) -> str:
    return hmac.new(KEY_SECRET.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def sign_webhook(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


# ============================================================
# Database
# ============================================================
@pytest.fixture
def engine(tmp_path):
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'gymflow_test.db'}")
    create_db_and_tables(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def clock():
    return Clock(datetime(2024, 1, 15, 10, 0, 0))


@pytest.fixture
def seed(engine):
    """Admin, owner, two members, two gyms and plans."""
    with Session(engine) as session:
        admin = User(full_name="Admin", email="admin@example.com", role=UserRole.ADMIN.value)
        owner = User(full_name="Owner", email="owner@example.com", role=UserRole.OWNER.value)
        other_owner = User(full_name="Other Owner", email="other-owner@example.com", role=UserRole.OWNER.value)
        member = User(
            full_name="Member",
            email="member@example.com",
            mobile_number="+919800000002",
            role=UserRole.USER.value,
        )
        member2 = User(full_name="Member Two", email="member2@example.com", role=UserRole.USER.value)
        session.add_all([admin, owner, other_owner, member, member2])
        session.commit()

        gym = Gym(name="Iron Temple", owner_id=owner.id)
        other_gym = Gym(name="Other Gym", owner_id=other_owner.id)
        session.add_all([gym, other_gym])
        session.commit()

        monthly = Plan(gym_id=gym.id, name="Monthly", price=1000.0, duration_value=1, duration_unit="month")
        weekly = Plan(gym_id=gym.id, name="Weekly", price=500.0, duration_value=1, duration_unit="week")
        quarterly = Plan(gym_id=gym.id, name="Quarterly", price=700.0, duration_value=3, duration_unit="month")
        retired = Plan(
            gym_id=gym.id, name="Retired", price=100.0, duration_value=1, duration_unit="day", is_active=False
        )
        other_plan = Plan(gym_id=other_gym.id, name="Other Monthly", price=900.0, duration_value=1, duration_unit="month")
        session.add_all([monthly, weekly, quarterly, retired, other_plan])
        session.commit()

        return SimpleNamespace(
            admin_id=admin.id,
            owner_id=owner.id,
            other_owner_id=other_owner.id,
            member_id=member.id,
            member2_id=member2.id,
            gym_id=gym.id,
            other_gym_id=other_gym.id,
            monthly_plan_id=monthly.id,
            weekly_plan_id=weekly.id,
            quarterly_plan_id=quarterly.id,
            retired_plan_id=retired.id,
            other_plan_id=other_plan.id,
        )


# ============================================================
# Services
# ============================================================
@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def job_queue(engine, clock):
    return JobQueue(engine, default_max_attempts=3, backoff_seconds=1.0, clock=clock)


@pytest.fixture
def audit_service(engine, job_queue):
    return AuditService(engine, job_queue)


@pytest.fixture
def notification_service(engine, job_queue, email_service):
    return NotificationService(engine, job_queue, email_service)


@pytest.fixture
def subscription_service(engine, gateway, audit_service, clock):
    return SubscriptionService(engine, gateway, audit_service, currency="INR", clock=clock)


@pytest.fixture
def reconciliation_service(engine, gateway, audit_service, notification_service, job_queue, clock):
    return ReconciliationService(engine, gateway, audit_service, notification_service, job_queue, clock=clock)


@pytest.fixture
def settlement_service(engine, audit_service, notification_service, clock):
    return SettlementService(engine, audit_service, notification_service, clock=clock)


@pytest.fixture
def paid_subscription(seed, subscription_service, reconciliation_service):
    """Checkout + valid callback; returns the activated subscription."""

    def _pay(user_id: Optional[int] = None, plan_id: Optional[int] = None, gym_id: Optional[int] = None):
        checkout = subscription_service.create_subscription(
            user_id or seed.member_id,
            plan_id or seed.monthly_plan_id,
            gym_id or seed.gym_id,
        )
        payment_id = f"pay_{checkout.subscription.id}"
        return reconciliation_service.handle_payment_callback(
            checkout.order.id, payment_id, sign(checkout.order.id, payment_id)
        )

    return _pay


@pytest.fixture
def add_completed_payment(engine, clock):
    """Insert a completed payment directly (any source, any amount)."""

    def _add(user_id: int, gym_id: int, plan_id: int, amount: float, source: str = SubscriptionSource.APP.value):
        with Session(engine) as session:
            subscription = Subscription(
                user_id=user_id,
                gym_id=gym_id,
                plan_id=plan_id,
                status=SubscriptionStatus.ACTIVE.value,
                source=source,
                start_date=clock(),
                end_date=clock() + timedelta(days=30),
                access_code=uuid.uuid4().hex[:8].upper(),
            )
            session.add(subscription)
            session.commit()
            payment = Payment(
                subscription_id=subscription.id,
                amount=amount,
                gateway_order_id=f"order_seed_{subscription.id}",
                gateway_payment_id=f"pay_seed_{subscription.id}",
                status=PaymentStatus.COMPLETED.value,
                completed_at=clock(),
            )
            session.add(payment)
            session.commit()
            return payment.id

    return _add
