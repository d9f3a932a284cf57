# services/notification_service.py
import json
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from models.models import Notification, User
from services.email_service import EmailService
from services.job_queue import NOTIFICATION_QUEUE, JobQueue

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    SETTLEMENT_CREATED = "SETTLEMENT_CREATED"
    SETTLEMENT_PROCESSED = "SETTLEMENT_PROCESSED"


def render_notification(event: str, payload: Dict[str, Any]) -> tuple[str, str]:
    """Title and message for an event."""
    if event == NotificationEvent.SUBSCRIPTION_ACTIVATED:
        return (
            "Subscription activated",
            f"Your {payload.get('plan_name', 'plan')} subscription at {payload.get('gym_name', 'the gym')} "
            f"is active until {payload.get('end_date')}. Access code: {payload.get('access_code')}.",
        )
    if event == NotificationEvent.SETTLEMENT_CREATED:
        return (
            "Settlement created",
            f"A settlement of {payload.get('amount')} for {payload.get('gym_name', 'your gym')} "
            f"has been created and is pending payout.",
        )
    if event == NotificationEvent.SETTLEMENT_PROCESSED:
        return (
            "Settlement paid out",
            f"The settlement of {payload.get('amount')} for {payload.get('gym_name', 'your gym')} "
            f"has been paid. Transaction ID: {payload.get('transaction_id')}.",
        )
    return (event.replace("_", " ").title(), json.dumps(payload, default=str))


class NotificationService:
    """
    Fire-and-forget user notifications.

    `notify_user` only enqueues; `deliver` is the queue handler that sends the
    email and records the in-app notification.
    """

    def __init__(self, engine: Engine, job_queue: JobQueue, email_service: EmailService):
        self.engine = engine
        self.job_queue = job_queue
        self.email_service = email_service

    def notify_user(self, user_id: int, event: str, payload: Optional[Dict[str, Any]] = None) -> Optional[str]:
        event_id = uuid.uuid4().hex
        data = {
            "event_id": event_id,
            "user_id": user_id,
            "event": str(event.value if isinstance(event, Enum) else event),
            "payload": payload or {},
        }
        try:
            self.job_queue.enqueue(NOTIFICATION_QUEUE, data)
        except Exception as e:
            logger.error(f"❌ Failed to queue notification {data['event']} for user {user_id}: {e}")
            return None
        return event_id

    def deliver(self, data: Dict[str, Any]) -> None:
        """Queue handler: email the user, then store the notification once."""
        with Session(self.engine) as session:
            existing = session.exec(
                select(Notification).where(Notification.event_id == data["event_id"])
            ).first()
            if existing:
                logger.info(f"ℹ️ Notification {data['event_id']} already delivered, skipping")
                return

            user = session.get(User, data["user_id"])
            if not user:
                logger.warning(f"⚠️ Dropping notification {data['event_id']}: user {data['user_id']} not found")
                return

            title, message = render_notification(data["event"], data.get("payload") or {})
            if user.email:
                self.email_service.send_notification_email(user.email, title, message)

            session.add(Notification(
                event_id=data["event_id"],
                user_id=user.id,
                event=data["event"],
                title=title,
                message=message,
                payload=json.dumps(data.get("payload") or {}, default=str),
            ))
            session.commit()
            logger.info(f"🔔 Notification {data['event']} delivered to user {user.id}")

