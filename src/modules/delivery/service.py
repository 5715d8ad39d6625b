"""Delivery service — photographer/client order actions, final-zip status and retry."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from src.config import settings
from src.exceptions import (
    BusinessRuleException,
    ConflictException,
    JobDispatchError,
    NotFoundException,
)
from src.models.enums import DeliveryStatus, FinalZipStatus
from src.models.order import Order
from src.modules.archive.builder import archive_key
from src.modules.archive.dispatcher import FinalizeJobDispatcher
from src.modules.delivery.constants import CLEAR_FLAG_FIELDS, FLAG_FIELD, FLAG_SINCE_FIELD
from src.modules.delivery.coordinator import CompletionTriggerCoordinator, DeliveryCompletion
from src.modules.delivery.order_store import OrderStoreBase
from src.modules.delivery.state_machine import DeliveryStateMachine
from src.modules.storage.base import ObjectInfo, ObjectStoreBase, ObjectStoreError

logger = logging.getLogger(__name__)


class DeliveryService:
    def __init__(
        self,
        store: OrderStoreBase,
        dispatcher: FinalizeJobDispatcher,
        objects: ObjectStoreBase | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.objects = objects
        self.state_machine = DeliveryStateMachine(store)
        self.coordinator = CompletionTriggerCoordinator(self.state_machine, dispatcher)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, gallery_id: str, order_id: str) -> Order:
        order = await self.store.get(gallery_id, order_id)
        if order is None:
            raise NotFoundException(f"Order {gallery_id}/{order_id} not found")
        return order

    async def list_orders(
        self, gallery_id: str, status: DeliveryStatus | None = None
    ) -> list[Order]:
        return await self.store.query(gallery_id, status=status)

    # ------------------------------------------------------------------
    # Client actions
    # ------------------------------------------------------------------

    async def approve_selection(
        self,
        gallery_id: str,
        order_id: str,
        selected_keys: list[str] | None = None,
    ) -> Order:
        """Client approves their selection, optionally replacing it."""
        extra_fields: dict = {}
        if selected_keys is not None:
            extra_fields["selected_keys"] = list(dict.fromkeys(selected_keys))
        return await self.state_machine.transition(
            gallery_id, order_id, DeliveryStatus.CLIENT_APPROVED, extra_fields
        )

    async def request_changes(self, gallery_id: str, order_id: str) -> Order:
        return await self.state_machine.transition(
            gallery_id, order_id, DeliveryStatus.CHANGES_REQUESTED
        )

    # ------------------------------------------------------------------
    # Photographer actions
    # ------------------------------------------------------------------

    async def approve_change_request(
        self, gallery_id: str, order_id: str | None = None
    ) -> Order:
        """Reopen selection for the order awaiting changes.

        When ``order_id`` is omitted, the gallery's single CHANGES_REQUESTED
        order is used. Selection and other fields are preserved.
        """
        if order_id is None:
            pending = await self.store.query(
                gallery_id, status=DeliveryStatus.CHANGES_REQUESTED
            )
            if not pending:
                raise NotFoundException(
                    f"No order with a pending change request in gallery {gallery_id}"
                )
            order_id = pending[0].order_id

        return await self.state_machine.transition(
            gallery_id, order_id, DeliveryStatus.CLIENT_SELECTING
        )

    async def start_delivery_preparation(self, gallery_id: str, order_id: str) -> Order:
        return await self.state_machine.transition(
            gallery_id, order_id, DeliveryStatus.PREPARING_DELIVERY
        )

    async def send_final_link(self, gallery_id: str, order_id: str) -> DeliveryCompletion:
        """Mark the order delivered and start building its archive."""
        return await self.coordinator.complete_delivery(gallery_id, order_id)

    # ------------------------------------------------------------------
    # Final zip
    # ------------------------------------------------------------------

    async def get_final_zip_status(self, gallery_id: str, order_id: str) -> dict:
        order = await self.get_order(gallery_id, order_id)
        zip_key = archive_key(gallery_id, order_id)

        info: ObjectInfo | None = None
        if self.objects is not None and order.delivery_status == DeliveryStatus.DELIVERED:
            try:
                info = await asyncio.to_thread(self.objects.head, zip_key)
            except ObjectStoreError as exc:
                logger.warning("Could not inspect %s: %s", zip_key, exc)

        if order.final_zip_generating is True:
            status = FinalZipStatus.GENERATING
        elif order.final_zip_error_attempts > 0:
            status = FinalZipStatus.ERROR
        elif info is not None:
            status = FinalZipStatus.READY
        else:
            status = FinalZipStatus.NOT_STARTED

        return {
            "gallery_id": gallery_id,
            "order_id": order_id,
            "status": status,
            "zip_key": zip_key,
            "zip_exists": info is not None,
            "zip_size_bytes": info.size if info is not None else None,
            "generating_since": order.final_zip_generating_since,
            "error_attempts": order.final_zip_error_attempts,
            "last_error": order.final_zip_last_error,
        }

    async def retry_final_zip(self, gallery_id: str, order_id: str) -> DeliveryCompletion:
        """Re-run a failed archive build.

        Clears the recorded error and sets the guard flag in one conditional
        write, then dispatches. Unlike the delivery trigger, a dispatch
        failure here is reported to the caller.
        """
        order = await self.get_order(gallery_id, order_id)
        if order.delivery_status != DeliveryStatus.DELIVERED:
            raise BusinessRuleException("Only delivered orders have a final zip to retry")
        if order.final_zip_generating is True:
            raise ConflictException("Final zip generation is already in progress")
        if order.final_zip_error_attempts <= 0:
            raise BusinessRuleException("Final zip has no recorded failure to retry")

        now = datetime.now(UTC)
        updated = await self.store.conditional_update(
            gallery_id,
            order_id,
            {
                FLAG_FIELD: True,
                FLAG_SINCE_FIELD: now,
                "final_zip_error_attempts": 0,
                "final_zip_last_error": None,
            },
            expected_status=DeliveryStatus.DELIVERED,
        )
        await self.store.commit()

        try:
            job_id = await asyncio.to_thread(self.dispatcher.dispatch, gallery_id, order_id)
        except JobDispatchError as exc:
            await self.store.update(
                gallery_id,
                order_id,
                {
                    **CLEAR_FLAG_FIELDS,
                    "final_zip_error_attempts": 1,
                    "final_zip_last_error": exc.message,
                },
            )
            await self.store.commit()
            raise

        logger.info("Final zip retry dispatched for order %s/%s", gallery_id, order_id)
        return DeliveryCompletion(order=updated, job_id=job_id)

    async def release_stale_final_zip_flags(self, now: datetime | None = None) -> dict:
        """Clear guard flags whose job never reported back.

        Each released order records an error so it can be retried.
        """
        stats = {"checked": 0, "released": 0, "errors": 0}
        threshold = timedelta(seconds=settings.final_zip_stale_after_seconds)
        cutoff = (now or datetime.now(UTC)) - threshold

        stale = await self.store.find_stale_generating(cutoff)
        stats["checked"] = len(stale)
        for order in stale:
            try:
                await self.store.update(
                    order.gallery_id,
                    order.order_id,
                    {
                        **CLEAR_FLAG_FIELDS,
                        "final_zip_error_attempts": Order.final_zip_error_attempts + 1,
                        "final_zip_last_error": (
                            f"Archive build did not report within {int(threshold.total_seconds())}s"
                        ),
                    },
                )
                await self.store.commit()
                stats["released"] += 1
                logger.warning(
                    "Released stale final zip flag for order %s/%s",
                    order.gallery_id, order.order_id,
                )
            except Exception:
                logger.exception(
                    "Error releasing final zip flag for order %s/%s",
                    order.gallery_id, order.order_id,
                )
                stats["errors"] += 1
        return stats
