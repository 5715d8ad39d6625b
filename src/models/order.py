"""Order model — a client's photo selection within a gallery and its delivery status."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin
from src.models.enums import DeliveryStatus

# Columns captured in change-feed images, in a stable order
IMAGE_FIELDS: tuple[str, ...] = (
    "gallery_id",
    "order_id",
    "delivery_status",
    "selected_keys",
    "change_requests_blocked",
    "final_zip_generating",
    "final_zip_generating_since",
    "final_zip_files_hash",
    "final_zip_error_attempts",
    "final_zip_last_error",
    "delivered_at",
    "updated_at",
)


class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    gallery_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        SQLAlchemyEnum(DeliveryStatus, name="deliverystatus", native_enum=False, length=32),
        nullable=False,
        default=DeliveryStatus.CLIENT_SELECTING,
    )
    selected_keys: Mapped[list] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list
    )
    change_requests_blocked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    # Guard flag: set while a finalize job is believed to be in flight
    final_zip_generating: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    final_zip_generating_since: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    final_zip_files_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    final_zip_error_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    final_zip_last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_orders_delivery_status", "delivery_status"),
        # At most one outstanding change request per gallery
        Index(
            "uq_orders_gallery_changes_requested",
            "gallery_id",
            unique=True,
            postgresql_where=text("delivery_status = 'CHANGES_REQUESTED'"),
            sqlite_where=text("delivery_status = 'CHANGES_REQUESTED'"),
        ),
        Index(
            "ix_orders_final_zip_generating",
            "final_zip_generating_since",
            postgresql_where=text("final_zip_generating IS TRUE"),
        ),
    )

    __mapper_args__ = {"eager_defaults": True}

    def to_image(self) -> dict:
        """Snapshot the row as a plain dict; ``None`` means the attribute is absent."""
        image: dict = {}
        for field in IMAGE_FIELDS:
            value = getattr(self, field)
            if isinstance(value, DeliveryStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            image[field] = value
        return image

    def __repr__(self) -> str:
        return (
            f"<Order gallery={self.gallery_id} order={self.order_id} "
            f"status={self.delivery_status}>"
        )
