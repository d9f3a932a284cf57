"""
Settlement batching: exact sums, partitioning, races, processing.
"""

import json
import threading

import pytest
from sqlmodel import Session, select

from core.exceptions import (
    InvalidStateTransition,
    NoUnsettledPayments,
    NotFound,
    SettlementConflict,
)
from models.models import Payment, QueueJob, Settlement
from services.job_queue import AUDIT_LOG_QUEUE, NOTIFICATION_QUEUE
from services.settlement_service import SettlementService


def payments_by_id(engine):
    with Session(engine) as session:
        return {p.id: p for p in session.exec(select(Payment)).all()}


def settlements(engine):
    with Session(engine) as session:
        return session.exec(select(Settlement)).all()


def test_settlement_sums_completed_payments(engine, seed, settlement_service, add_completed_payment):
    first = add_completed_payment(seed.member_id, seed.gym_id, seed.weekly_plan_id, 500.0)
    second = add_completed_payment(seed.member2_id, seed.gym_id, seed.quarterly_plan_id, 700.0)

    settlement = settlement_service.create_settlement(seed.gym_id, actor_id=seed.admin_id)

    assert settlement.amount == 1200.0
    assert settlement.status == "pending"
    rows = payments_by_id(engine)
    assert rows[first].settlement_id == settlement.id
    assert rows[second].settlement_id == settlement.id


def test_second_settlement_has_nothing_to_settle(seed, settlement_service, add_completed_payment):
    add_completed_payment(seed.member_id, seed.gym_id, seed.monthly_plan_id, 1000.0)
    settlement_service.create_settlement(seed.gym_id)

    with pytest.raises(NoUnsettledPayments):
        settlement_service.create_settlement(seed.gym_id)


def test_only_app_payments_of_this_gym_are_settled(engine, seed, settlement_service, add_completed_payment):
    app_payment = add_completed_payment(seed.member_id, seed.gym_id, seed.monthly_plan_id, 1000.0)
    manual = add_completed_payment(seed.member2_id, seed.gym_id, seed.monthly_plan_id, 800.0, source="manual")
    whatsapp = add_completed_payment(seed.member2_id, seed.gym_id, seed.weekly_plan_id, 300.0, source="whatsapp")
    elsewhere = add_completed_payment(seed.member_id, seed.other_gym_id, seed.other_plan_id, 900.0)

    settlement = settlement_service.create_settlement(seed.gym_id)

    assert settlement.amount == 1000.0
    rows = payments_by_id(engine)
    assert rows[app_payment].settlement_id == settlement.id
    assert rows[manual].settlement_id is None
    assert rows[whatsapp].settlement_id is None
    assert rows[elsewhere].settlement_id is None


def test_pending_payments_are_not_settled(seed, subscription_service, settlement_service):
    subscription_service.create_subscription(seed.member_id, seed.monthly_plan_id, seed.gym_id)
    with pytest.raises(NoUnsettledPayments):
        settlement_service.create_settlement(seed.gym_id)


def test_settles_payments_made_through_checkout(seed, paid_subscription, settlement_service):
    paid_subscription()
    paid_subscription(user_id=seed.member2_id, plan_id=seed.weekly_plan_id)

    settlement = settlement_service.create_settlement(seed.gym_id)
    assert settlement.amount == 1500.0


def test_unknown_gym(seed, settlement_service):
    with pytest.raises(NotFound):
        settlement_service.create_settlement(9999)


def test_creation_queues_audit_and_owner_notification(engine, seed, settlement_service, add_completed_payment):
    add_completed_payment(seed.member_id, seed.gym_id, seed.monthly_plan_id, 1000.0)
    settlement = settlement_service.create_settlement(seed.gym_id, actor_id=seed.admin_id)

    with Session(engine) as session:
        jobs = session.exec(select(QueueJob).order_by(QueueJob.id)).all()
    audits = [json.loads(j.payload) for j in jobs if j.queue == AUDIT_LOG_QUEUE]
    notes = [json.loads(j.payload) for j in jobs if j.queue == NOTIFICATION_QUEUE]

    assert audits[-1]["action"] == "SETTLEMENT_CREATED"
    assert audits[-1]["entity_id"] == str(settlement.id)
    assert audits[-1]["actor_id"] == str(seed.admin_id)
    assert notes[-1]["event"] == "SETTLEMENT_CREATED"
    assert notes[-1]["user_id"] == seed.owner_id


def test_unsettled_amount(seed, settlement_service, add_completed_payment):
    add_completed_payment(seed.member_id, seed.gym_id, seed.weekly_plan_id, 500.0)
    add_completed_payment(seed.member2_id, seed.gym_id, seed.quarterly_plan_id, 700.0)

    summary = settlement_service.get_unsettled_amount(seed.gym_id)
    assert summary.amount == 1200.0
    assert summary.count == 2
    assert len(summary.payments) == 2

    settlement_service.create_settlement(seed.gym_id)
    summary = settlement_service.get_unsettled_amount(seed.gym_id)
    assert summary.amount == 0
    assert summary.count == 0


def test_lost_race_is_retried(engine, seed, settlement_service, add_completed_payment, audit_service,
                              notification_service, clock):
    add_completed_payment(seed.member_id, seed.gym_id, seed.weekly_plan_id, 500.0)
    add_completed_payment(seed.member2_id, seed.gym_id, seed.quarterly_plan_id, 700.0)

    rival = SettlementService(engine, audit_service, notification_service, clock=clock)
    original = settlement_service._select_unsettled
    calls = []

    def select_then_lose(session, gym_id, for_update=False):
        rows = original(session, gym_id, for_update)
        calls.append(len(rows))
        if len(calls) == 1:
            rival.create_settlement(gym_id)
        return rows

    settlement_service._select_unsettled = select_then_lose

    with pytest.raises(NoUnsettledPayments):
        settlement_service.create_settlement(seed.gym_id)

    assert calls == [2, 0]
    only = settlements(engine)
    assert len(only) == 1
    assert only[0].amount == 1200.0
    assert {p.settlement_id for p in payments_by_id(engine).values()} == {only[0].id}


def test_conflict_after_repeated_losses(engine, seed, settlement_service, add_completed_payment):
    add_completed_payment(seed.member_id, seed.gym_id, seed.monthly_plan_id, 1000.0)
    attempts = []

    def always_lose(gym_id):
        attempts.append(gym_id)
        return None

    settlement_service._claim_unsettled = always_lose

    with pytest.raises(SettlementConflict) as exc:
        settlement_service.create_settlement(seed.gym_id)
    assert exc.value.retryable is True
    assert len(attempts) == 3
    assert settlements(engine) == []


def test_concurrent_settlements_never_share_payments(engine, seed, settlement_service, add_completed_payment):
    payment_ids = [
        add_completed_payment(seed.member_id, seed.gym_id, seed.weekly_plan_id, 500.0),
        add_completed_payment(seed.member2_id, seed.gym_id, seed.quarterly_plan_id, 700.0),
        add_completed_payment(seed.member2_id, seed.gym_id, seed.monthly_plan_id, 1000.0),
    ]

    barrier = threading.Barrier(2, timeout=10)
    local = threading.local()
    original = settlement_service._select_unsettled

    def racing_select(session, gym_id, for_update=False):
        rows = original(session, gym_id, for_update)
        if not getattr(local, "waited", False):
            local.waited = True
            barrier.wait()
        return rows

    settlement_service._select_unsettled = racing_select
    results, errors = [], []

    def run():
        try:
            results.append(settlement_service.create_settlement(seed.gym_id))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert len(results) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], (NoUnsettledPayments, SettlementConflict))

    stored = settlements(engine)
    assert len(stored) == 1
    assert stored[0].amount == 2200.0
    rows = payments_by_id(engine)
    assert all(rows[pid].settlement_id == stored[0].id for pid in payment_ids)


def test_process_settlement(engine, seed, settlement_service, add_completed_payment, clock):
    add_completed_payment(seed.member_id, seed.gym_id, seed.monthly_plan_id, 1000.0)
    settlement = settlement_service.create_settlement(seed.gym_id)
    clock.advance(days=1)

    processed = settlement_service.process_settlement(
        settlement.id, "UTR123456", notes="NEFT batch", actor_id=seed.admin_id
    )

    assert processed.status == "processed"
    assert processed.transaction_id == "UTR123456"
    assert processed.notes == "NEFT batch"
    assert processed.processed_at == clock()
    assert processed.amount == 1000.0

    with pytest.raises(InvalidStateTransition):
        settlement_service.process_settlement(settlement.id, "UTR999")

    with Session(engine) as session:
        stored = session.get(Settlement, settlement.id)
    assert stored.transaction_id == "UTR123456"


def test_process_missing_settlement(seed, settlement_service):
    with pytest.raises(NotFound):
        settlement_service.process_settlement(9999, "UTR1")


def test_list_and_get_settlements(seed, settlement_service, add_completed_payment, clock):
    first_payment = add_completed_payment(seed.member_id, seed.gym_id, seed.monthly_plan_id, 1000.0)
    first = settlement_service.create_settlement(seed.gym_id)
    clock.advance(hours=1)
    add_completed_payment(seed.member_id, seed.other_gym_id, seed.other_plan_id, 900.0)
    second = settlement_service.create_settlement(seed.other_gym_id)
    settlement_service.process_settlement(second.id, "UTR2")

    assert [s.id for s in settlement_service.list_settlements()] == [second.id, first.id]
    assert [s.id for s in settlement_service.list_settlements(gym_id=seed.gym_id)] == [first.id]
    assert [s.id for s in settlement_service.list_settlements(status="processed")] == [second.id]

    detail = settlement_service.get_settlement(first.id)
    assert detail.settlement.id == first.id
    assert [p.id for p in detail.payments] == [first_payment]

    with pytest.raises(NotFound):
        settlement_service.get_settlement(9999)
