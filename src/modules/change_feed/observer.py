"""Fallback trigger: dispatch the finalize job for orders delivered out of band."""

from __future__ import annotations

import logging

from src.models.enums import ChangeEventName, DeliveryStatus
from src.modules.archive.dispatcher import FinalizeJobDispatcher
from src.modules.change_feed.schemas import ChangeRecord
from src.modules.delivery.constants import FLAG_FIELD

logger = logging.getLogger(__name__)


class DeliveredOrderObserver:
    """Watches order change records for a transition into DELIVERED.

    The guard flag is read from the record's own new image, never from a
    fresh read of the order: the image is exactly what the primary trigger
    wrote, while the live row may already have been cleared by the job.
    Dispatch errors propagate so the change feed retries the record.
    """

    def __init__(self, dispatcher: FinalizeJobDispatcher | None = None) -> None:
        self.dispatcher = dispatcher or FinalizeJobDispatcher()

    def __call__(self, record: ChangeRecord) -> bool:
        return self.handle(record)

    def handle(self, record: ChangeRecord) -> bool:
        """Return True if a finalize job was dispatched for this record."""
        if record.event_name != ChangeEventName.MODIFY:
            return False
        if record.old_image is None or record.new_image is None:
            return False

        new_image = record.new_image
        old_image = record.old_image
        gallery_id = new_image.get("gallery_id")
        order_id = new_image.get("order_id")
        if not gallery_id or not order_id:
            logger.warning("Change %s has no order identity, ignoring", record.event_id)
            return False

        delivered = DeliveryStatus.DELIVERED.value
        if new_image.get("delivery_status") != delivered:
            return False
        if old_image.get("delivery_status") == delivered:
            return False

        if new_image.get(FLAG_FIELD) is True:
            logger.info(
                "Order %s/%s delivered with guard flag set, primary trigger owns the job",
                gallery_id, order_id,
            )
            return False

        self.dispatcher.dispatch(gallery_id, order_id)
        logger.info(
            "Order %s/%s delivered without guard flag, finalize job dispatched by change feed",
            gallery_id, order_id,
        )
        return True
