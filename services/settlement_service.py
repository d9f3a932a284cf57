# services/settlement_service.py
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from core.exceptions import (
    InvalidStateTransition,
    NoUnsettledPayments,
    NotFound,
    SettlementConflict,
)
from models.models import (
    Gym,
    Payment,
    PaymentStatus,
    Settlement,
    SettlementStatus,
    Subscription,
    SubscriptionSource,
    utcnow,
)
from services.audit_service import AuditService
from services.notification_service import NotificationEvent, NotificationService

logger = logging.getLogger(__name__)


@dataclass
class UnsettledSummary:
    gym_id: int
    amount: float
    count: int
    payments: List[Payment] = field(default_factory=list)


@dataclass
class SettlementDetail:
    settlement: Settlement
    payments: List[Payment] = field(default_factory=list)


class SettlementService:
    """
    Batches a gym's completed, unsettled gateway payments into settlements.

    Only APP-sourced subscriptions are settled: manual and WhatsApp sales were
    collected by the gym itself.
    """

    def __init__(
        self,
        engine: Engine,
        audit: AuditService,
        notifier: NotificationService,
        max_claim_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.audit = audit
        self.notifier = notifier
        self.max_claim_attempts = max_claim_attempts
        self.clock = clock

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _select_unsettled(self, session: Session, gym_id: int, for_update: bool = False) -> List[Payment]:
        statement = (
            select(Payment)
            .join(Subscription, Payment.subscription_id == Subscription.id)
            .where(
                Subscription.gym_id == gym_id,
                Subscription.source == SubscriptionSource.APP.value,
                Payment.status == PaymentStatus.COMPLETED.value,
                Payment.settlement_id.is_(None),
            )
            .order_by(Payment.id)
        )
        if for_update:
            statement = statement.with_for_update()
        return list(session.exec(statement).all())

    def _get_gym(self, gym_id: int) -> Gym:
        with self._session() as session:
            gym = session.get(Gym, gym_id)
            if not gym:
                raise NotFound("Gym")
            return gym

    # ============================================================
    # ✅ Create settlement
    # ============================================================
    def create_settlement(self, gym_id: int, actor_id: Optional[int] = None) -> Settlement:
        gym = self._get_gym(gym_id)

        settlement: Optional[Settlement] = None
        payment_ids: List[int] = []
        for attempt in range(1, self.max_claim_attempts + 1):
            claimed = self._claim_unsettled(gym.id)
            if claimed:
                settlement, payment_ids = claimed
                break
            logger.warning(
                f"🔄 Settlement claim for gym {gym.id} lost a race "
                f"(attempt {attempt}/{self.max_claim_attempts}), retrying"
            )

        if settlement is None:
            raise SettlementConflict("Payments are being settled concurrently, please retry")

        logger.info(
            f"💰 Settlement {settlement.id} created for gym {gym.id}: "
            f"{len(payment_ids)} payments, amount {settlement.amount}"
        )
        self.audit.log_action(
            "SETTLEMENT_CREATED",
            "settlement",
            settlement.id,
            actor_id=actor_id,
            gym_id=gym.id,
            details={"amount": settlement.amount, "payment_ids": payment_ids},
        )
        self.notifier.notify_user(
            gym.owner_id,
            NotificationEvent.SETTLEMENT_CREATED,
            {
                "settlement_id": settlement.id,
                "amount": settlement.amount,
                "gym_name": gym.name,
                "payment_count": len(payment_ids),
            },
        )
        return settlement

    def _claim_unsettled(self, gym_id: int) -> Optional[tuple[Settlement, List[int]]]:
        """One claim attempt. Returns None when another claimer took some of the payments."""
        with self._session() as session:
            payments = self._select_unsettled(session, gym_id, for_update=True)
            if not payments:
                raise NoUnsettledPayments("No unsettled payments found for this gym")

            now = self.clock()
            payment_ids = [p.id for p in payments]
            settlement = Settlement(
                gym_id=gym_id,
                amount=round(sum(p.amount for p in payments), 2),
                status=SettlementStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(settlement)
            session.flush()

            result = session.exec(
                update(Payment)
                .where(Payment.id.in_(payment_ids), Payment.settlement_id.is_(None))
                .values(settlement_id=settlement.id, updated_at=now)
            )
            if result.rowcount != len(payment_ids):
                session.rollback()
                return None

            session.commit()
            session.refresh(settlement)
            return settlement, payment_ids

    # ============================================================
    # ✅ Unsettled balance
    # ============================================================
    def get_unsettled_amount(self, gym_id: int) -> UnsettledSummary:
        with self._session() as session:
            payments = self._select_unsettled(session, gym_id)
        return UnsettledSummary(
            gym_id=gym_id,
            amount=round(sum(p.amount for p in payments), 2),
            count=len(payments),
            payments=payments,
        )

    # ============================================================
    # ✅ Mark paid out
    # ============================================================
    def process_settlement(
        self,
        settlement_id: int,
        transaction_id: str,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Settlement:
        with self._session() as session:
            settlement = session.get(Settlement, settlement_id)
            if not settlement:
                raise NotFound("Settlement")
            if settlement.status == SettlementStatus.PROCESSED.value:
                raise InvalidStateTransition("Settlement has already been processed")

            now = self.clock()
            result = session.exec(
                update(Settlement)
                .where(
                    Settlement.id == settlement.id,
                    Settlement.status == SettlementStatus.PENDING.value,
                )
                .values(
                    status=SettlementStatus.PROCESSED.value,
                    transaction_id=transaction_id,
                    notes=notes,
                    processed_at=now,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidStateTransition("Settlement has already been processed")

            session.commit()
            session.refresh(settlement)
            gym = session.get(Gym, settlement.gym_id)

        logger.info(f"🏦 Settlement {settlement.id} processed with transaction {transaction_id}")
        self.audit.log_action(
            "SETTLEMENT_PROCESSED",
            "settlement",
            settlement.id,
            actor_id=actor_id,
            gym_id=settlement.gym_id,
            details={"transaction_id": transaction_id, "amount": settlement.amount},
        )
        if gym:
            self.notifier.notify_user(
                gym.owner_id,
                NotificationEvent.SETTLEMENT_PROCESSED,
                {
                    "settlement_id": settlement.id,
                    "amount": settlement.amount,
                    "gym_name": gym.name,
                    "transaction_id": transaction_id,
                },
            )
        return settlement

    # ============================================================
    # ✅ Reads
    # ============================================================
    def list_settlements(self, gym_id: Optional[int] = None, status: Optional[str] = None) -> List[Settlement]:
        with self._session() as session:
            statement = select(Settlement)
            if gym_id is not None:
                statement = statement.where(Settlement.gym_id == gym_id)
            if status:
                statement = statement.where(Settlement.status == status)
            return list(session.exec(
                statement.order_by(Settlement.created_at.desc(), Settlement.id.desc())
            ).all())

    def get_settlement(self, settlement_id: int) -> SettlementDetail:
        with self._session() as session:
            settlement = session.get(Settlement, settlement_id)
            if not settlement:
                raise NotFound("Settlement")
            payments = session.exec(
                select(Payment).where(Payment.settlement_id == settlement.id).order_by(Payment.id)
            ).all()
            return SettlementDetail(settlement=settlement, payments=list(payments))
