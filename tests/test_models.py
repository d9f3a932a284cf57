"""
Table definitions: timestamp columns and naive UTC storage.
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Session, SQLModel

from models.models import QueueJob, utcnow


def test_timestamp_columns_store_naive_datetimes():
    columns = [
        column
        for table in SQLModel.metadata.sorted_tables
        for column in table.columns
        if column.name.endswith(("_at", "_date"))
    ]

    assert columns
    for column in columns:
        assert type(column.type) is DateTime, column
        assert column.type.timezone is False, column


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None


def test_naive_timestamps_round_trip(engine, clock):
    with Session(engine) as session:
        job = QueueJob(queue="audit-logs", payload="{}", available_at=clock(), locked_at=clock())
        session.add(job)
        session.commit()
        job_id = job.id

    with Session(engine) as session:
        stored = session.get(QueueJob, job_id)
        assert stored.available_at == datetime(2024, 1, 15, 10, 0)
        assert stored.locked_at == datetime(2024, 1, 15, 10, 0)
        assert stored.failed_at is None
