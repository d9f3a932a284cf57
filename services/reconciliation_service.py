# services/reconciliation_service.py
"""
Applies payment-gateway callbacks to payments and subscriptions.

A callback is applied at most once: completion is a conditional update
(`status = pending`) and the payment and subscription change together in
one transaction or not at all.
"""
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from core.exceptions import (
    AlreadyProcessed,
    InvalidSignature,
    InvalidStateTransition,
    NotFound,
)
from models.models import (
    Gym,
    Payment,
    PaymentStatus,
    Plan,
    Subscription,
    SubscriptionStatus,
    utcnow,
)
from services.audit_service import AuditService
from services.duration import add_duration, parse_duration_unit
from services.job_queue import PAYMENT_EVENT_QUEUE, JobQueue
from services.notification_service import NotificationEvent, NotificationService
from services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

CAPTURE_EVENTS = ("payment.captured", "order.paid")
FAILURE_EVENTS = ("payment.failed",)


class ReconciliationService:
    def __init__(
        self,
        engine: Engine,
        gateway: PaymentGateway,
        audit: AuditService,
        notifier: NotificationService,
        job_queue: JobQueue,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.gateway = gateway
        self.audit = audit
        self.notifier = notifier
        self.job_queue = job_queue
        self.clock = clock

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # ============================================================
    # ✅ Client confirmation / captured webhook
    # ============================================================
    def handle_payment_callback(
        self,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: Optional[str],
        *,
        pre_verified: bool = False,
    ) -> Subscription:
        """
        Verify the callback and activate the subscription.

        Replaying a callback for a completed payment returns the subscription
        as it is. `pre_verified` is only for events whose envelope was already
        authenticated (signed webhooks).
        """
        try:
            return self._apply_callback(gateway_order_id, gateway_payment_id, signature, pre_verified)
        except AlreadyProcessed:
            logger.info(f"ℹ️ Payment for order {gateway_order_id} already processed, returning current state")
            return self._completed_subscription(gateway_order_id)

    def _apply_callback(
        self,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: Optional[str],
        pre_verified: bool,
    ) -> Subscription:
        with self._session() as session:
            row = session.exec(
                select(Payment, Subscription, Plan, Gym)
                .join(Subscription, Payment.subscription_id == Subscription.id)
                .join(Plan, Subscription.plan_id == Plan.id)
                .join(Gym, Subscription.gym_id == Gym.id)
                .where(Payment.gateway_order_id == gateway_order_id)
            ).first()
            if not row:
                raise NotFound("Payment")
            payment, subscription, plan, gym = row

            if payment.status == PaymentStatus.COMPLETED.value:
                raise AlreadyProcessed()
            if payment.status == PaymentStatus.FAILED.value:
                raise InvalidStateTransition("Payment has already failed")

            if not pre_verified and not self.gateway.verify_signature(
                gateway_order_id, gateway_payment_id, signature or ""
            ):
                self._fail_payment(session, payment, subscription, "signature_invalid", gateway_payment_id)
                raise InvalidSignature("Payment signature verification failed")

            unit = parse_duration_unit(plan.duration_unit)
            now = self.clock()
            end_date = add_duration(now, plan.duration_value, unit)

            paid = session.exec(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
                .values(
                    status=PaymentStatus.COMPLETED.value,
                    gateway_payment_id=gateway_payment_id,
                    gateway_signature=signature,
                    completed_at=now,
                    updated_at=now,
                )
            )
            if paid.rowcount != 1:
                session.rollback()
                raise AlreadyProcessed()

            activated = session.exec(
                update(Subscription)
                .where(
                    Subscription.id == subscription.id,
                    Subscription.status == SubscriptionStatus.PENDING.value,
                )
                .values(
                    status=SubscriptionStatus.ACTIVE.value,
                    start_date=now,
                    end_date=end_date,
                    updated_at=now,
                )
            )
            if activated.rowcount != 1:
                session.rollback()
                raise InvalidStateTransition(
                    f"Subscription {subscription.id} is {subscription.status} and cannot be activated"
                )

            session.commit()
            session.refresh(payment)
            session.refresh(subscription)

        logger.info(
            f"✅ Payment {payment.id} completed, subscription {subscription.id} active until {end_date.isoformat()}"
        )

        self.audit.log_action(
            "PAYMENT_COMPLETED",
            "payment",
            payment.id,
            actor_id=subscription.user_id,
            gym_id=subscription.gym_id,
            details={
                "subscription_id": subscription.id,
                "amount": payment.amount,
                "currency": payment.currency,
                "gateway_order_id": gateway_order_id,
                "gateway_payment_id": gateway_payment_id,
            },
        )
        self.notifier.notify_user(
            subscription.user_id,
            NotificationEvent.SUBSCRIPTION_ACTIVATED,
            {
                "subscription_id": subscription.id,
                "plan_name": plan.name,
                "gym_name": gym.name,
                "end_date": subscription.end_date.date().isoformat(),
                "access_code": subscription.access_code,
            },
        )
        return subscription

    def _completed_subscription(self, gateway_order_id: str) -> Subscription:
        with self._session() as session:
            row = session.exec(
                select(Payment, Subscription)
                .join(Subscription, Payment.subscription_id == Subscription.id)
                .where(Payment.gateway_order_id == gateway_order_id)
            ).first()
            if not row:
                raise NotFound("Payment")
            payment, subscription = row
            if payment.status != PaymentStatus.COMPLETED.value:
                raise InvalidStateTransition(f"Payment is {payment.status}")
            return subscription

    def _fail_payment(
        self,
        session: Session,
        payment: Payment,
        subscription: Subscription,
        reason: str,
        gateway_payment_id: Optional[str] = None,
    ) -> bool:
        now = self.clock()
        result = session.exec(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
            .values(
                status=PaymentStatus.FAILED.value,
                failure_reason=reason[:255],
                gateway_payment_id=gateway_payment_id or payment.gateway_payment_id,
                updated_at=now,
            )
        )
        session.commit()
        if result.rowcount != 1:
            return False

        logger.warning(f"⚠️ Payment {payment.id} marked failed: {reason}")
        self.audit.log_action(
            "PAYMENT_FAILED",
            "payment",
            payment.id,
            actor_id=subscription.user_id,
            gym_id=subscription.gym_id,
            details={"reason": reason, "gateway_order_id": payment.gateway_order_id},
        )
        return True

    def mark_payment_failed(
        self,
        gateway_order_id: str,
        reason: str,
        gateway_payment_id: Optional[str] = None,
    ) -> bool:
        """PENDING -> FAILED. Returns False when the payment was already terminal."""
        with self._session() as session:
            row = session.exec(
                select(Payment, Subscription)
                .join(Subscription, Payment.subscription_id == Subscription.id)
                .where(Payment.gateway_order_id == gateway_order_id)
            ).first()
            if not row:
                raise NotFound("Payment")
            payment, subscription = row
            changed = self._fail_payment(session, payment, subscription, reason, gateway_payment_id)

        if not changed:
            logger.info(f"ℹ️ Payment for order {gateway_order_id} is {payment.status}, failure ignored")
        return changed

    # ============================================================
    # ✅ Webhooks (authenticated, then processed from the queue)
    # ============================================================
    def receive_webhook(self, body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not self.gateway.verify_webhook_signature(body, signature or ""):
            logger.warning("⚠️ Rejected webhook with invalid signature")
            raise InvalidSignature("Invalid webhook signature")

        try:
            event = json.loads(body)
        except ValueError:
            raise InvalidSignature("Webhook body is not valid JSON")
        if not isinstance(event, dict):
            raise InvalidSignature("Webhook body is not a JSON object")

        data = {"event": event.get("event"), "payload": event.get("payload") or {}}
        self.job_queue.enqueue(PAYMENT_EVENT_QUEUE, data)
        logger.info(f"📥 Webhook {data['event']} queued")
        return data

    def handle_webhook_event(self, data: Dict[str, Any]) -> None:
        """Queue handler for payment events."""
        event = data.get("event")
        payload = data.get("payload") or {}
        payment_entity = (payload.get("payment") or {}).get("entity") or {}
        order_entity = (payload.get("order") or {}).get("entity") or {}
        order_id = payment_entity.get("order_id") or order_entity.get("id")
        payment_id = payment_entity.get("id")

        if event in CAPTURE_EVENTS:
            if not (order_id and payment_id):
                logger.warning(f"⚠️ Webhook {event} without order/payment id, ignoring")
                return
            try:
                self.handle_payment_callback(order_id, payment_id, None, pre_verified=True)
            except (NotFound, InvalidStateTransition) as e:
                # Not retryable: unknown order or a payment that can no longer complete
                logger.warning(f"⚠️ Webhook {event} for order {order_id} not applied: {e.detail}")
        elif event in FAILURE_EVENTS:
            if not order_id:
                logger.warning(f"⚠️ Webhook {event} without order id, ignoring")
                return
            reason = payment_entity.get("error_description") or "payment_failed"
            try:
                self.mark_payment_failed(order_id, reason, payment_id)
            except NotFound:
                logger.warning(f"⚠️ Webhook {event} for unknown order {order_id}")
        else:
            logger.info(f"ℹ️ Ignoring webhook event {event}")
