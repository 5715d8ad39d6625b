"""Tests for ChangeFeedProcessor — batch handling, retries, per-order ordering."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from src.models.enums import ChangeEventName, EventStatus
from src.models.order_change_event import OrderChangeEvent
from src.models.processed_event import ProcessedEvent
from src.modules.change_feed.handlers import ORDERS_STREAM, ChangeHandlerRegistry
from src.modules.change_feed.processor import ChangeFeedProcessor, claim_next_statement


@pytest.fixture(autouse=True)
def clean_registry():
    ChangeHandlerRegistry.clear()
    yield
    ChangeHandlerRegistry.clear()


def _add_events(engine, *order_ids, max_retries=3):
    """Insert one MODIFY change record per order id, in the given order."""
    with Session(engine) as session:
        for order_id in order_ids:
            session.add(
                OrderChangeEvent(
                    event_id=uuid.uuid4(),
                    event_name=ChangeEventName.MODIFY,
                    gallery_id="gal-1",
                    order_id=order_id,
                    old_image={"delivery_status": "PREPARING_DELIVERY"},
                    new_image={"delivery_status": "DELIVERED"},
                    status=EventStatus.PENDING,
                    retry_count=0,
                    max_retries=max_retries,
                )
            )
        session.commit()


def _events(engine) -> list[OrderChangeEvent]:
    with Session(engine) as session:
        return list(
            session.execute(
                select(OrderChangeEvent).order_by(OrderChangeEvent.sequence_number)
            ).scalars().all()
        )


class TestProcessBatch:
    def test_dispatches_records_in_sequence_and_marks_completed(self, sync_test_engine):
        seen = []

        def record_handler(record):
            seen.append(record.order_id)

        ChangeHandlerRegistry.register(ORDERS_STREAM, record_handler)
        _add_events(sync_test_engine, "ord-1", "ord-2", "ord-3")

        stats = ChangeFeedProcessor(sync_test_engine).process_batch()

        assert stats == {"processed": 3, "failed": 0, "deferred": 0}
        assert seen == ["ord-1", "ord-2", "ord-3"]
        events = _events(sync_test_engine)
        assert all(e.status == EventStatus.COMPLETED for e in events)
        assert all(e.processed_at is not None for e in events)

        with Session(sync_test_engine) as session:
            ledger = session.execute(select(ProcessedEvent)).scalars().all()
        assert {row.event_id for row in ledger} == {e.event_id for e in events}
        assert all(row.handler_name == "record_handler" for row in ledger)

    def test_failed_record_returns_to_pending_and_blocks_same_order(self, sync_test_engine):
        seen = []

        def flaky_handler(record):
            if record.order_id == "ord-1" and record.sequence_number == 1:
                raise RuntimeError("broker unavailable")
            seen.append((record.order_id, record.sequence_number))

        ChangeHandlerRegistry.register(ORDERS_STREAM, flaky_handler)
        _add_events(sync_test_engine, "ord-1", "ord-2", "ord-1")

        stats = ChangeFeedProcessor(sync_test_engine).process_batch()

        assert stats == {"processed": 1, "failed": 1, "deferred": 1}
        assert seen == [("ord-2", 2)]
        first, second, third = _events(sync_test_engine)
        assert first.status == EventStatus.PENDING
        assert first.retry_count == 1
        assert "broker unavailable" in first.last_error
        assert second.status == EventStatus.COMPLETED
        assert third.status == EventStatus.PENDING
        assert third.retry_count == 0

    def test_record_fails_permanently_after_max_retries(self, sync_test_engine):
        def broken_handler(record):
            raise RuntimeError("still down")

        ChangeHandlerRegistry.register(ORDERS_STREAM, broken_handler)
        _add_events(sync_test_engine, "ord-1", max_retries=2)
        processor = ChangeFeedProcessor(sync_test_engine)

        processor.process_batch()
        processor.process_batch()
        stats = processor.process_batch()

        (event,) = _events(sync_test_engine)
        assert event.status == EventStatus.FAILED
        assert event.retry_count == 2
        assert stats == {"processed": 0, "failed": 0, "deferred": 0}

    def test_already_processed_record_is_completed_without_dispatch(self, sync_test_engine):
        calls = []
        ChangeHandlerRegistry.register(ORDERS_STREAM, calls.append)
        _add_events(sync_test_engine, "ord-1")
        (event,) = _events(sync_test_engine)

        with Session(sync_test_engine) as session:
            session.add(
                ProcessedEvent(
                    event_id=event.event_id,
                    event_name="MODIFY",
                    gallery_id="gal-1",
                    order_id="ord-1",
                    handler_name="earlier_worker",
                    expires_at=datetime.now(UTC) + timedelta(days=7),
                )
            )
            session.commit()

        stats = ChangeFeedProcessor(sync_test_engine).process_batch()

        assert stats["processed"] == 1
        assert calls == []
        (event,) = _events(sync_test_engine)
        assert event.status == EventStatus.COMPLETED

    def test_batch_size_limits_records(self, sync_test_engine):
        ChangeHandlerRegistry.register(ORDERS_STREAM, lambda record: None)
        _add_events(sync_test_engine, "ord-1", "ord-2", "ord-3")

        stats = ChangeFeedProcessor(sync_test_engine).process_batch(batch_size=2)

        assert stats["processed"] == 2
        statuses = [e.status for e in _events(sync_test_engine)]
        assert statuses == [EventStatus.COMPLETED, EventStatus.COMPLETED, EventStatus.PENDING]


    def test_each_record_is_settled_in_its_own_transaction(self, sync_test_engine):
        observed = {}

        def inspecting_handler(record):
            if record.sequence_number == 2:
                observed.update({e.sequence_number: e.status for e in _events(sync_test_engine)})

        ChangeHandlerRegistry.register(ORDERS_STREAM, inspecting_handler)
        _add_events(sync_test_engine, "ord-1", "ord-2", "ord-3")

        ChangeFeedProcessor(sync_test_engine).process_batch()

        assert observed == {
            1: EventStatus.COMPLETED,
            2: EventStatus.PENDING,
            3: EventStatus.PENDING,
        }


class TestClaimNext:
    def test_claims_one_row_and_skips_rows_locked_by_other_workers(self):
        sql = str(
            claim_next_statement([]).compile(
                dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}
            )
        )

        assert "LIMIT 1" in sql
        assert "FOR UPDATE OF order_change_events SKIP LOCKED" in sql

    def test_record_behind_an_unsettled_record_of_its_order_is_not_claimed(
        self, sync_test_engine
    ):
        _add_events(sync_test_engine, "ord-1", "ord-2", "ord-1")

        with Session(sync_test_engine) as session:
            claimed = session.execute(claim_next_statement([1])).scalars().first()
            assert claimed.order_id == "ord-2"
            assert session.execute(claim_next_statement([1, 2])).scalars().first() is None

class TestCleanupExpired:
    def test_deletes_expired_ledger_rows_and_old_completed_records(self, sync_test_engine):
        _add_events(sync_test_engine, "ord-1", "ord-2")
        now = datetime.now(UTC)
        with Session(sync_test_engine) as session:
            old, recent = session.execute(
                select(OrderChangeEvent).order_by(OrderChangeEvent.sequence_number)
            ).scalars().all()
            old.status = EventStatus.COMPLETED
            old.processed_at = now - timedelta(days=45)
            recent.status = EventStatus.COMPLETED
            recent.processed_at = now - timedelta(days=1)
            session.add(
                ProcessedEvent(
                    event_id=uuid.uuid4(),
                    event_name="MODIFY",
                    gallery_id="gal-1",
                    order_id="ord-9",
                    handler_name="h",
                    expires_at=now - timedelta(days=1),
                )
            )
            session.commit()

        deleted = ChangeFeedProcessor(sync_test_engine).cleanup_expired()

        assert deleted == 2
        assert [e.order_id for e in _events(sync_test_engine)] == ["ord-2"]
