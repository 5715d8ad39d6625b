"""Completion trigger — marks an order DELIVERED and starts the finalize job."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from src.exceptions import JobDispatchError
from src.models.enums import DeliveryStatus
from src.models.order import Order
from src.modules.archive.dispatcher import FinalizeJobDispatcher
from src.modules.delivery.constants import FLAG_FIELD, FLAG_SINCE_FIELD
from src.modules.delivery.state_machine import DeliveryStateMachine

logger = logging.getLogger(__name__)


@dataclass
class DeliveryCompletion:
    order: Order
    job_id: str | None

    @property
    def dispatched(self) -> bool:
        return self.job_id is not None


class CompletionTriggerCoordinator:
    """Primary trigger path for the finalize job.

    The status change and the guard flag go out in one conditional write so
    the change record carries the flag in its new image; the change-stream
    observer reads that and stands down.
    """

    def __init__(self, state_machine: DeliveryStateMachine, dispatcher: FinalizeJobDispatcher) -> None:
        self.state_machine = state_machine
        self.dispatcher = dispatcher

    async def complete_delivery(self, gallery_id: str, order_id: str) -> DeliveryCompletion:
        now = datetime.now(UTC)
        order = await self.state_machine.transition(
            gallery_id,
            order_id,
            DeliveryStatus.DELIVERED,
            extra_fields={
                FLAG_FIELD: True,
                FLAG_SINCE_FIELD: now,
                "delivered_at": now,
            },
        )
        # The job must never observe the pre-commit state
        await self.state_machine.store.commit()

        job_id = None
        try:
            job_id = await asyncio.to_thread(self.dispatcher.dispatch, gallery_id, order_id)
        except JobDispatchError:
            # Delivery stands; the flag ages out via the stale-flag sweep and
            # the photographer can retry from the final-zip status.
            logger.exception(
                "Finalize job dispatch failed for order %s/%s", gallery_id, order_id
            )

        return DeliveryCompletion(order=order, job_id=job_id)
