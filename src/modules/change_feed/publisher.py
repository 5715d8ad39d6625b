"""ChangeFeedPublisher — records order old/new images in the writer's transaction."""

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import ChangeEventName, EventStatus
from src.models.order_change_event import OrderChangeEvent


class ChangeFeedPublisher:
    """Appends change records to ``order_change_events``.

    Records are flushed, never committed, so they become visible exactly when
    the order write they describe commits.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record_change(
        self,
        event_name: ChangeEventName,
        gallery_id: str,
        order_id: str,
        old_image: dict | None,
        new_image: dict | None,
    ) -> OrderChangeEvent:
        """Create a PENDING change record for one order write."""
        event = OrderChangeEvent(
            event_name=event_name,
            gallery_id=gallery_id,
            order_id=order_id,
            old_image=old_image,
            new_image=new_image,
            status=EventStatus.PENDING,
        )
        self.session.add(event)
        await self.session.flush()
        return event

