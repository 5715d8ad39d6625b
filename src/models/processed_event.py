"""ProcessedEvent model — ledger of change records already handled.

A record whose ``event_id`` is here is never dispatched again, even if a
worker crashed after its handlers ran but before the record was completed.
"""

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, UUIDPrimaryKeyMixin


class ProcessedEvent(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "processed_events"

    event_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    sequence_number: Mapped[int | None] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"), nullable=True
    )
    event_name: Mapped[str] = mapped_column(String(32), nullable=False)
    gallery_id: Mapped[str] = mapped_column(String(128), nullable=False)
    order_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # Comma-separated names of the handlers that ran
    handler_name: Mapped[str] = mapped_column(String(512), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_processed_events_expires_at", "expires_at"),
        Index("ix_processed_events_order", "gallery_id", "order_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessedEvent event_id={self.event_id} "
            f"order={self.gallery_id}/{self.order_id} handlers={self.handler_name}>"
        )
