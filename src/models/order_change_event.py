"""OrderChangeEvent model — transactional change feed of order old/new images."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base
from src.models.enums import ChangeEventName, EventStatus

_JSON = JSON().with_variant(JSONB(), "postgresql")


class OrderChangeEvent(Base):
    __tablename__ = "order_change_events"

    sequence_number: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, unique=True, default=uuid.uuid4
    )
    event_name: Mapped[ChangeEventName] = mapped_column(
        SQLAlchemyEnum(ChangeEventName, name="changeeventname", native_enum=False, length=16),
        nullable=False,
    )
    gallery_id: Mapped[str] = mapped_column(String(128), nullable=False)
    order_id: Mapped[str] = mapped_column(String(128), nullable=False)
    old_image: Mapped[dict | None] = mapped_column(_JSON, nullable=True)
    new_image: Mapped[dict | None] = mapped_column(_JSON, nullable=True)
    status: Mapped[EventStatus] = mapped_column(
        SQLAlchemyEnum(EventStatus, name="eventstatus", native_enum=False, length=16),
        nullable=False,
        default=EventStatus.PENDING,
        server_default="PENDING",
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default="5")
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_order_change_events_order", "gallery_id", "order_id"),
        Index(
            "ix_order_change_events_pending",
            "sequence_number",
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderChangeEvent seq={self.sequence_number} name={self.event_name} "
            f"order={self.gallery_id}/{self.order_id} status={self.status}>"
        )
