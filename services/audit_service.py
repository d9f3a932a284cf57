# services/audit_service.py
import json
import logging
import uuid
from typing import Any, Dict, Optional, Union

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from models.models import AuditLog
from services.job_queue import AUDIT_LOG_QUEUE, JobQueue

logger = logging.getLogger(__name__)


class AuditService:
    """
    Append-only audit trail.

    `log_action` never blocks or fails the calling operation: it drops a job on
    the audit queue and returns. The queue worker persists it later through
    `write_audit_log`, which tolerates duplicate deliveries.
    """

    def __init__(self, engine: Engine, job_queue: JobQueue):
        self.engine = engine
        self.job_queue = job_queue

    def log_action(
        self,
        action: str,
        entity: str,
        entity_id: Union[int, str],
        actor_id: Optional[Union[int, str]] = None,
        gym_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        event_id = uuid.uuid4().hex
        data = {
            "event_id": event_id,
            "action": action,
            "entity": entity,
            "entity_id": str(entity_id),
            "actor_id": str(actor_id) if actor_id is not None else None,
            "gym_id": gym_id,
            "details": details or {},
        }
        try:
            self.job_queue.enqueue(AUDIT_LOG_QUEUE, data)
        except Exception as e:
            # Audit logging must never abort the business operation
            logger.error(f"❌ Failed to queue audit log {action} for {entity}:{entity_id}: {e}")
            return None
        return event_id

    def write_audit_log(self, data: Dict[str, Any]) -> None:
        """Queue handler: persist one audit event (idempotent on event_id)."""
        with Session(self.engine) as session:
            existing = session.exec(
                select(AuditLog).where(AuditLog.event_id == data["event_id"])
            ).first()
            if existing:
                logger.info(f"ℹ️ Audit event {data['event_id']} already recorded, skipping")
                return

            session.add(AuditLog(
                event_id=data["event_id"],
                action=data["action"],
                entity=data["entity"],
                entity_id=data["entity_id"],
                actor_id=data.get("actor_id"),
                gym_id=data.get("gym_id"),
                details=json.dumps(data.get("details") or {}, default=str),
            ))
            session.commit()
