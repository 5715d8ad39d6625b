"""Order store adapter — typed get / conditional update / query over ``orders``.

Every write appends a change record (old image, new image) through
``ChangeFeedPublisher`` in the same transaction, which is what the
change-stream observer consumes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import ConditionFailedException, ConflictException, NotFoundException
from src.models.enums import ChangeEventName, DeliveryStatus
from src.models.order import Order
from src.modules.change_feed.publisher import ChangeFeedPublisher

logger = logging.getLogger(__name__)


class OrderStoreBase(ABC):
    @abstractmethod
    async def get(self, gallery_id: str, order_id: str) -> Order | None:
        """Return the order, or None if it does not exist."""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """Insert a new order."""

    @abstractmethod
    async def conditional_update(
        self,
        gallery_id: str,
        order_id: str,
        fields: dict,
        expected_status: DeliveryStatus,
    ) -> Order:
        """Apply ``fields`` only if the stored status equals ``expected_status``.

        Raises ConditionFailedException when the condition does not hold.
        A ``None`` value removes the attribute.
        """

    @abstractmethod
    async def update(self, gallery_id: str, order_id: str, fields: dict) -> Order | None:
        """Apply ``fields`` unconditionally. Returns None if the order is gone."""

    @abstractmethod
    async def query(
        self, gallery_id: str, status: DeliveryStatus | None = None
    ) -> list[Order]:
        """Return the gallery's orders, optionally filtered by status."""

    @abstractmethod
    async def find_stale_generating(self, older_than: datetime) -> list[Order]:
        """Return orders whose guard flag was set before ``older_than``."""

    @abstractmethod
    async def commit(self) -> None:
        """Make preceding writes (and their change records) durable."""


class SqlOrderStore(OrderStoreBase):
    """Order store backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.change_feed = ChangeFeedPublisher(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _load(self, gallery_id: str, order_id: str, *, for_update: bool = False) -> Order | None:
        statement = (
            select(Order)
            .where(Order.gallery_id == gallery_id, Order.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            statement = statement.with_for_update()
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def get(self, gallery_id: str, order_id: str) -> Order | None:
        return await self._load(gallery_id, order_id)

    async def query(
        self, gallery_id: str, status: DeliveryStatus | None = None
    ) -> list[Order]:
        statement = select(Order).where(Order.gallery_id == gallery_id)
        if status is not None:
            statement = statement.where(Order.delivery_status == status)
        statement = statement.order_by(Order.created_at.asc(), Order.order_id.asc())
        result = await self.session.execute(
            statement.execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_stale_generating(self, older_than: datetime) -> list[Order]:
        result = await self.session.execute(
            select(Order).where(
                Order.final_zip_generating.is_(True),
                Order.final_zip_generating_since < older_than,
            )
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, order: Order) -> Order:
        now = datetime.now(UTC)
        order.created_at = now
        order.updated_at = now
        self.session.add(order)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictException(
                f"Order {order.gallery_id}/{order.order_id} already exists"
            ) from exc

        await self.change_feed.record_change(
            ChangeEventName.INSERT, order.gallery_id, order.order_id, None, order.to_image()
        )
        return order

    async def conditional_update(
        self,
        gallery_id: str,
        order_id: str,
        fields: dict,
        expected_status: DeliveryStatus,
    ) -> Order:
        order = await self._load(gallery_id, order_id, for_update=True)
        if order is None:
            raise NotFoundException(f"Order {gallery_id}/{order_id} not found")
        if order.delivery_status != expected_status:
            raise ConditionFailedException(
                f"Order {gallery_id}/{order_id} is {order.delivery_status.value}, "
                f"expected {expected_status.value}"
            )

        old_image = order.to_image()
        statement = (
            update(Order)
            .where(
                Order.gallery_id == gallery_id,
                Order.order_id == order_id,
                Order.delivery_status == expected_status,
            )
            .values(**fields, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(statement)
        except IntegrityError as exc:
            raise ConflictException(
                f"Gallery {gallery_id} already has an order awaiting changes"
            ) from exc
        if result.rowcount != 1:
            raise ConditionFailedException(
                f"Order {gallery_id}/{order_id} changed concurrently, "
                f"expected {expected_status.value}"
            )

        await self.session.refresh(order)
        await self.change_feed.record_change(
            ChangeEventName.MODIFY, gallery_id, order_id, old_image, order.to_image()
        )
        return order

    async def update(self, gallery_id: str, order_id: str, fields: dict) -> Order | None:
        order = await self._load(gallery_id, order_id, for_update=True)
        if order is None:
            logger.warning("Order %s/%s not found for update", gallery_id, order_id)
            return None

        old_image = order.to_image()
        await self.session.execute(
            update(Order)
            .where(Order.gallery_id == gallery_id, Order.order_id == order_id)
            .values(**fields, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(order)
        await self.change_feed.record_change(
            ChangeEventName.MODIFY, gallery_id, order_id, old_image, order.to_image()
        )
        return order

    async def commit(self) -> None:
        await self.session.commit()
