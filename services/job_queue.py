# services/job_queue.py
"""
Durable background queue stored in the `queue_job` table.

Jobs are claimed with a conditional update (queued -> active), deleted on
success, retried with exponential backoff on failure, and parked as FAILED
once they run out of attempts. FAILED jobs are kept for inspection until
`purge_failed` removes them.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from models.models import JobStatus, QueueJob, utcnow

logger = logging.getLogger(__name__)

AUDIT_LOG_QUEUE = "audit-logs"
NOTIFICATION_QUEUE = "notifications"
PAYMENT_EVENT_QUEUE = "payment-events"


class JobQueue:
    def __init__(
        self,
        engine: Engine,
        default_max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.default_max_attempts = default_max_attempts
        self.backoff_seconds = backoff_seconds
        self.clock = clock

    def enqueue(
        self,
        queue: str,
        payload: Dict[str, Any],
        max_attempts: Optional[int] = None,
    ) -> QueueJob:
        now = self.clock()
        job = QueueJob(
            queue=queue,
            payload=json.dumps(payload, default=str),
            status=JobStatus.QUEUED.value,
            max_attempts=max_attempts or self.default_max_attempts,
            available_at=now,
            created_at=now,
        )
        with Session(self.engine) as session:
            session.add(job)
            session.commit()
            session.refresh(job)
        return job

    def claim(self, queue: str, limit: int) -> List[QueueJob]:
        """Claim up to `limit` due jobs. A job is only handed to one claimer."""
        now = self.clock()
        claimed_ids: List[int] = []
        with Session(self.engine) as session:
            candidates = session.exec(
                select(QueueJob)
                .where(
                    QueueJob.queue == queue,
                    QueueJob.status == JobStatus.QUEUED.value,
                    QueueJob.available_at <= now,
                )
                .order_by(QueueJob.id)
                .limit(limit)
            ).all()

            for job in candidates:
                result = session.exec(
                    update(QueueJob)
                    .where(QueueJob.id == job.id, QueueJob.status == JobStatus.QUEUED.value)
                    .values(status=JobStatus.ACTIVE.value, locked_at=now)
                )
                if result.rowcount == 1:
                    claimed_ids.append(job.id)
            session.commit()

            jobs = [session.get(QueueJob, job_id) for job_id in claimed_ids]
        return [job for job in jobs if job is not None]

    def complete(self, job_id: int) -> None:
        with Session(self.engine) as session:
            session.exec(delete(QueueJob).where(QueueJob.id == job_id))
            session.commit()

    def backoff_delay(self, attempts: int) -> timedelta:
        return timedelta(seconds=self.backoff_seconds * (2 ** max(attempts - 1, 0)))

    def fail(self, job_id: int, error: str) -> Optional[QueueJob]:
        """Record a failed attempt; reschedule or park the job as FAILED."""
        now = self.clock()
        with Session(self.engine) as session:
            job = session.get(QueueJob, job_id)
            if not job:
                return None

            job.attempts += 1
            job.last_error = error[:1000]
            job.locked_at = None
            if job.attempts >= job.max_attempts:
                job.status = JobStatus.FAILED.value
                job.failed_at = now
                logger.error(
                    f"❌ Job {job.id} on '{job.queue}' failed permanently after {job.attempts} attempts: {error}"
                )
            else:
                job.status = JobStatus.QUEUED.value
                job.available_at = now + self.backoff_delay(job.attempts)
                logger.warning(
                    f"🔄 Job {job.id} on '{job.queue}' failed (attempt {job.attempts}/{job.max_attempts}), "
                    f"retrying at {job.available_at.isoformat()}"
                )
            session.add(job)
            session.commit()
            session.refresh(job)
            return job

    def requeue_stalled(self, queue: str, stalled_after: timedelta) -> int:
        """Hand back jobs whose worker disappeared while holding them."""
        cutoff = self.clock() - stalled_after
        with Session(self.engine) as session:
            result = session.exec(
                update(QueueJob)
                .where(
                    QueueJob.queue == queue,
                    QueueJob.status == JobStatus.ACTIVE.value,
                    QueueJob.locked_at < cutoff,
                )
                .values(status=JobStatus.QUEUED.value, locked_at=None)
            )
            session.commit()
            if result.rowcount:
                logger.warning(f"⚠️ Re-queued {result.rowcount} stalled jobs on '{queue}'")
            return result.rowcount

    def purge_failed(self, queue: str, older_than: timedelta) -> int:
        cutoff = self.clock() - older_than
        with Session(self.engine) as session:
            result = session.exec(
                delete(QueueJob).where(
                    QueueJob.queue == queue,
                    QueueJob.status == JobStatus.FAILED.value,
                    QueueJob.failed_at < cutoff,
                )
            )
            session.commit()
            return result.rowcount

    def failed_jobs(self, queue: str) -> List[QueueJob]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(QueueJob)
                .where(QueueJob.queue == queue, QueueJob.status == JobStatus.FAILED.value)
                .order_by(QueueJob.failed_at.desc())
            ).all())

    def pending_count(self, queue: str) -> int:
        with Session(self.engine) as session:
            return len(session.exec(
                select(QueueJob.id).where(
                    QueueJob.queue == queue,
                    QueueJob.status != JobStatus.FAILED.value,
                )
            ).all())
