# services/subscription_service.py
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from core.exceptions import (
    AccessCodeUnavailable,
    GatewayUnavailable,
    InvalidStateTransition,
    NotFound,
    SubscriptionAlreadyActive,
    SubscriptionNotActive,
)
from models.models import (
    Gym,
    Payment,
    PaymentStatus,
    Plan,
    Subscription,
    SubscriptionSource,
    SubscriptionStatus,
    User,
    utcnow,
)
from services.audit_service import AuditService
from services.duration import parse_duration_unit
from services.payment_gateway import GatewayOrder, PaymentGateway, to_minor_units

logger = logging.getLogger(__name__)

MAX_ACCESS_CODE_ATTEMPTS = 5


@dataclass
class SubscriptionCheckout:
    """Everything the client needs to open the gateway checkout."""

    subscription: Subscription
    payment: Payment
    order: GatewayOrder
    gateway_options: Dict[str, Any] = field(default_factory=dict)


class SubscriptionService:
    def __init__(
        self,
        engine: Engine,
        gateway: PaymentGateway,
        audit: AuditService,
        currency: str = "INR",
        app_name: str = "GymFlow",
        access_code_length: int = 8,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.gateway = gateway
        self.audit = audit
        self.currency = currency
        self.app_name = app_name
        self.access_code_length = access_code_length
        self.clock = clock

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def generate_access_code(self) -> str:
        return secrets.token_hex(self.access_code_length // 2 + 1)[: self.access_code_length].upper()

    # ============================================================
    # ✅ Create subscription (PENDING) + gateway order + PENDING payment
    # ============================================================
    def create_subscription(self, user_id: int, plan_id: int, gym_id: int) -> SubscriptionCheckout:
        with self._session() as session:
            user = session.get(User, user_id)
            if not user:
                raise NotFound("User")
            gym = session.get(Gym, gym_id)
            if not gym:
                raise NotFound("Gym")
            plan = session.get(Plan, plan_id)
            if not plan or plan.gym_id != gym.id or not plan.is_active:
                raise NotFound("Plan")

            # Activation needs a known duration unit
            parse_duration_unit(plan.duration_unit)

            active = self._active_subscription(session, user.id, gym.id)
            if active:
                raise SubscriptionAlreadyActive(
                    f"You already have an active subscription at {gym.name} until {active.end_date.date()}"
                )

        subscription = self._insert_pending_subscription(user.id, gym.id, plan.id)

        try:
            order = self.gateway.create_order(
                to_minor_units(plan.price),
                receipt_id=str(subscription.id),
                currency=self.currency,
                notes={"subscription_id": subscription.id, "gym_id": gym.id, "plan_id": plan.id},
            )
        except GatewayUnavailable:
            self._discard_pending_subscription(subscription.id)
            raise
        except Exception as e:
            logger.exception(f"❌ Unexpected gateway error for subscription {subscription.id}: {e}")
            self._discard_pending_subscription(subscription.id)
            raise GatewayUnavailable("Unable to create payment order right now") from e

        try:
            with self._session() as session:
                now = self.clock()
                payment = Payment(
                    subscription_id=subscription.id,
                    amount=plan.price,
                    currency=order.currency,
                    gateway_order_id=order.id,
                    status=PaymentStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(payment)
                session.commit()
                session.refresh(payment)
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to record payment for order {order.id}: {e}")
            self._discard_pending_subscription(subscription.id)
            raise

        logger.info(
            f"🧾 Subscription {subscription.id} created (user={user.id}, gym={gym.id}, "
            f"plan={plan.id}), awaiting payment on order {order.id}"
        )

        return SubscriptionCheckout(
            subscription=subscription,
            payment=payment,
            order=order,
            gateway_options={
                "key": self.gateway.public_key,
                "order_id": order.id,
                "amount": order.amount,
                "currency": order.currency,
                "name": self.app_name,
                "description": f"{plan.name} - {gym.name}",
                "prefill": {
                    "name": user.full_name,
                    "email": user.email,
                    "contact": user.mobile_number or "",
                },
                "notes": {
                    "subscription_id": subscription.id,
                    "gym_id": gym.id,
                    "plan_name": plan.name,
                    "gym_name": gym.name,
                },
            },
        )

    def _insert_pending_subscription(self, user_id: int, gym_id: int, plan_id: int) -> Subscription:
        for attempt in range(1, MAX_ACCESS_CODE_ATTEMPTS + 1):
            now = self.clock()
            subscription = Subscription(
                user_id=user_id,
                gym_id=gym_id,
                plan_id=plan_id,
                status=SubscriptionStatus.PENDING.value,
                source=SubscriptionSource.APP.value,
                start_date=now,
                end_date=now,
                access_code=self.generate_access_code(),
                created_at=now,
                updated_at=now,
            )
            with self._session() as session:
                session.add(subscription)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.warning(f"⚠️ Access code collision (attempt {attempt}/{MAX_ACCESS_CODE_ATTEMPTS})")
                    continue
                session.refresh(subscription)
                return subscription

        raise AccessCodeUnavailable("Could not allocate a unique access code, please try again")

    def _discard_pending_subscription(self, subscription_id: int) -> None:
        """Compensation: remove a subscription whose checkout never got a payment."""
        with self._session() as session:
            session.exec(delete(Payment).where(Payment.subscription_id == subscription_id))
            session.exec(
                delete(Subscription).where(
                    Subscription.id == subscription_id,
                    Subscription.status == SubscriptionStatus.PENDING.value,
                )
            )
            session.commit()
        logger.warning(f"🗑️ Discarded pending subscription {subscription_id} after checkout failure")

    # ============================================================
    # ✅ Reads
    # ============================================================
    def get_subscription(self, subscription_id: int) -> Subscription:
        with self._session() as session:
            subscription = session.get(Subscription, subscription_id)
            if not subscription:
                raise NotFound("Subscription")
            return subscription

    def list_user_subscriptions(self, user_id: int) -> List[Subscription]:
        with self._session() as session:
            return list(session.exec(
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            ).all())

    def list_gym_subscriptions(self, gym_id: int, status: Optional[str] = None) -> List[Subscription]:
        with self._session() as session:
            statement = select(Subscription).where(Subscription.gym_id == gym_id)
            if status:
                statement = statement.where(Subscription.status == status)
            return list(session.exec(
                statement.order_by(Subscription.created_at.desc(), Subscription.id.desc())
            ).all())

    def _active_subscription(self, session: Session, user_id: int, gym_id: int) -> Optional[Subscription]:
        return session.exec(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.gym_id == gym_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.end_date > self.clock(),
            )
            .order_by(Subscription.end_date.desc())
        ).first()

    def get_active_subscription(self, user_id: int, gym_id: int) -> Optional[Subscription]:
        """The user's current ACTIVE subscription at a gym, or None."""
        with self._session() as session:
            return self._active_subscription(session, user_id, gym_id)

    def list_expiring_subscriptions(self, gym_id: Optional[int] = None, within_days: int = 7) -> List[Subscription]:
        """ACTIVE subscriptions whose end_date falls within the next `within_days` days, soonest first."""
        now = self.clock()
        with self._session() as session:
            statement = select(Subscription).where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.end_date > now,
                Subscription.end_date <= now + timedelta(days=within_days),
            )
            if gym_id is not None:
                statement = statement.where(Subscription.gym_id == gym_id)
            return list(session.exec(
                statement.order_by(Subscription.end_date, Subscription.id)
            ).all())

    # ============================================================
    # ✅ Cancel
    # ============================================================
    def cancel_subscription(self, user_id: int, subscription_id: int) -> Subscription:
        with self._session() as session:
            subscription = session.get(Subscription, subscription_id)
            if not subscription or subscription.user_id != user_id:
                raise NotFound("Subscription")

            if subscription.status in (SubscriptionStatus.CANCELLED.value, SubscriptionStatus.EXPIRED.value):
                raise InvalidStateTransition(f"Subscription is already {subscription.status}")

            now = self.clock()
            result = session.exec(
                update(Subscription)
                .where(
                    Subscription.id == subscription.id,
                    Subscription.status.in_([
                        SubscriptionStatus.PENDING.value,
                        SubscriptionStatus.ACTIVE.value,
                    ]),
                )
                .values(status=SubscriptionStatus.CANCELLED.value, end_date=now, updated_at=now)
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidStateTransition("Subscription changed state while cancelling")

            session.commit()
            session.refresh(subscription)

        logger.info(f"🚫 Subscription {subscription.id} cancelled by user {user_id}")
        self.audit.log_action(
            "SUBSCRIPTION_CANCELLED",
            "subscription",
            subscription.id,
            actor_id=user_id,
            gym_id=subscription.gym_id,
        )
        return subscription

    # ============================================================
    # ✅ Access code check (gym entry)
    # ============================================================
    def verify_access_code(self, access_code: str, gym_id: Optional[int] = None) -> Subscription:
        with self._session() as session:
            subscription = session.exec(
                select(Subscription).where(Subscription.access_code == access_code.strip().upper())
            ).first()
            if not subscription or (gym_id is not None and subscription.gym_id != gym_id):
                raise NotFound("Subscription", "Invalid access code")

            if subscription.status != SubscriptionStatus.ACTIVE.value or subscription.end_date <= self.clock():
                raise SubscriptionNotActive(f"Subscription is {subscription.status}")
            return subscription

    # ============================================================
    # ✅ Expiry sweep
    # ============================================================
    def mark_expired_subscriptions(self) -> int:
        now = self.clock()
        with self._session() as session:
            result = session.exec(
                update(Subscription)
                .where(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    Subscription.end_date < now,
                )
                .values(status=SubscriptionStatus.EXPIRED.value, updated_at=now)
            )
            session.commit()
        if result.rowcount:
            logger.info(f"⏰ Marked {result.rowcount} subscriptions as expired")
        return result.rowcount
