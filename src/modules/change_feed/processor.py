"""ChangeFeedProcessor — synchronous batch processor for Celery workers."""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, aliased

from src.config import settings
from src.models.enums import EventStatus
from src.models.order_change_event import OrderChangeEvent
from src.models.processed_event import ProcessedEvent
from src.modules.change_feed.handlers import ORDERS_STREAM, ChangeHandlerRegistry
from src.modules.change_feed.schemas import ChangeRecord

logger = logging.getLogger(__name__)

PROCESSED_EVENT_TTL = timedelta(days=7)
COMPLETED_EVENT_RETENTION = timedelta(days=30)


def claim_next_statement(attempted: list[int]) -> Select:
    """Select the oldest dispatchable record, locked for this transaction.

    A record waits while an earlier record of its order is still PENDING, and
    records already attempted in this batch are excluded.
    """
    earlier = aliased(OrderChangeEvent)
    earlier_pending = (
        select(earlier.sequence_number)
        .where(
            earlier.gallery_id == OrderChangeEvent.gallery_id,
            earlier.order_id == OrderChangeEvent.order_id,
            earlier.sequence_number < OrderChangeEvent.sequence_number,
            earlier.status == EventStatus.PENDING,
        )
        .exists()
    )
    statement = (
        select(OrderChangeEvent)
        .where(OrderChangeEvent.status == EventStatus.PENDING, ~earlier_pending)
        .order_by(OrderChangeEvent.sequence_number.asc())
        .limit(1)
        .with_for_update(skip_locked=True, of=OrderChangeEvent)
    )
    if attempted:
        statement = statement.where(OrderChangeEvent.sequence_number.not_in(attempted))
    return statement


class ChangeFeedProcessor:
    """Processes pending order change records using sync sessions.

    Each record is claimed with SELECT ... FOR UPDATE SKIP LOCKED in its own
    transaction, and that transaction commits only once the record's outcome
    is written, so no two workers dispatch the same record. Idempotency is
    also tracked via the processed_events table. Records of one order are
    handled in sequence order: once a record fails, later records of the same
    order wait for the next batch.
    """

    def __init__(self, engine: Engine | None = None, registry=ChangeHandlerRegistry) -> None:
        if engine is None:
            from src.database.engine import sync_engine as engine
        self.engine = engine
        self.registry = registry

    def process_batch(self, batch_size: int | None = None) -> dict:
        """Process up to ``batch_size`` pending change records.

        Returns dict with 'processed', 'failed' and 'deferred' counts.
        """
        limit = batch_size or settings.change_feed_batch_size
        processed_count = 0
        failed_count = 0
        attempted: list[int] = []
        blocked_orders: set[tuple[str, str]] = set()

        with Session(self.engine) as session:
            while len(attempted) < limit:
                event = session.execute(claim_next_statement(attempted)).scalars().first()
                if event is None:
                    break

                record = ChangeRecord.from_event(event)
                retry_count, max_retries = event.retry_count, event.max_retries
                attempted.append(record.sequence_number)

                try:
                    already_processed = session.execute(
                        select(ProcessedEvent.id).where(ProcessedEvent.event_id == record.event_id)
                    ).first()

                    if already_processed is None:
                        # Mark as PROCESSING without committing, so a crash
                        # rolls the record back to PENDING
                        self._set_status(session, record.sequence_number, status=EventStatus.PROCESSING)

                        results = self.registry.dispatch(ORDERS_STREAM, record)
                        handler_errors = [r for r in results if r["status"] == "error"]
                        if handler_errors:
                            error_messages = "; ".join(
                                f"{r['handler']}: {r['error']}" for r in handler_errors
                            )
                            raise RuntimeError(f"Handler errors: {error_messages}")

                        session.add(
                            ProcessedEvent(
                                event_id=record.event_id,
                                sequence_number=record.sequence_number,
                                event_name=record.event_name.value,
                                gallery_id=record.gallery_id,
                                order_id=record.order_id,
                                handler_name=",".join(r["handler"] for r in results)
                                if results else "no_handlers",
                                processed_at=datetime.now(UTC),
                                expires_at=datetime.now(UTC) + PROCESSED_EVENT_TTL,
                            )
                        )

                    self._set_status(
                        session,
                        record.sequence_number,
                        status=EventStatus.COMPLETED,
                        processed_at=datetime.now(UTC),
                    )
                    session.commit()
                    processed_count += 1

                except Exception as exc:
                    session.rollback()
                    logger.exception(
                        "Failed to process change %s (order=%s/%s)",
                        record.sequence_number, record.gallery_id, record.order_id,
                    )

                    new_retry_count = retry_count + 1
                    new_status = (
                        EventStatus.FAILED if new_retry_count >= max_retries else EventStatus.PENDING
                    )
                    self._set_status(
                        session,
                        record.sequence_number,
                        status=new_status,
                        retry_count=new_retry_count,
                        last_error=str(exc)[:2000],
                    )
                    session.commit()
                    failed_count += 1
                    if new_status == EventStatus.PENDING:
                        blocked_orders.add((record.gallery_id, record.order_id))

            deferred_count = self._count_deferred(session, blocked_orders, attempted)

        return {"processed": processed_count, "failed": failed_count, "deferred": deferred_count}

    @staticmethod
    def _count_deferred(
        session: Session, blocked_orders: set[tuple[str, str]], attempted: list[int]
    ) -> int:
        deferred = 0
        for gallery_id, order_id in blocked_orders:
            deferred += session.execute(
                select(func.count())
                .select_from(OrderChangeEvent)
                .where(
                    OrderChangeEvent.gallery_id == gallery_id,
                    OrderChangeEvent.order_id == order_id,
                    OrderChangeEvent.status == EventStatus.PENDING,
                    OrderChangeEvent.sequence_number.not_in(attempted),
                )
            ).scalar_one()
        return deferred

    @staticmethod
    def _set_status(session: Session, sequence_number: int, **values) -> None:
        session.execute(
            update(OrderChangeEvent)
            .where(OrderChangeEvent.sequence_number == sequence_number)
            .values(**values)
        )

    def cleanup_expired(self) -> int:
        """Delete expired processed_events and old completed change records.

        Returns total number of rows deleted.
        """
        total_deleted = 0
        now = datetime.now(UTC)

        with Session(self.engine) as session:
            result = session.execute(
                delete(ProcessedEvent).where(ProcessedEvent.expires_at < now)
            )
            total_deleted += result.rowcount

            result = session.execute(
                delete(OrderChangeEvent).where(
                    OrderChangeEvent.status == EventStatus.COMPLETED,
                    OrderChangeEvent.processed_at < now - COMPLETED_EVENT_RETENTION,
                )
            )
            total_deleted += result.rowcount

            session.commit()

        logger.info("Cleaned up %d expired change feed records", total_deleted)
        return total_deleted
