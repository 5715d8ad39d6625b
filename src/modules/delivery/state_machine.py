"""Order delivery state machine — validated, guarded, conditional transitions."""

from __future__ import annotations

import logging

from src.exceptions import (
    BusinessRuleException,
    ConflictException,
    InvalidTransitionException,
    NotFoundException,
)
from src.models.enums import DeliveryStatus
from src.models.order import Order
from src.modules.delivery.constants import VALID_TRANSITIONS
from src.modules.delivery.order_store import OrderStoreBase

logger = logging.getLogger(__name__)


def validate_transition(current: DeliveryStatus, requested: DeliveryStatus) -> None:
    """Raise InvalidTransitionException if ``requested`` is not reachable from ``current``."""
    if requested not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionException(current.value, requested.value)


class DeliveryStateMachine:
    """Moves orders along VALID_TRANSITIONS.

    The current status is read right before a conditional write whose
    condition is that status, so a concurrent transition surfaces as
    ConditionFailedException instead of being overwritten.
    """

    def __init__(self, store: OrderStoreBase) -> None:
        self.store = store

    async def transition(
        self,
        gallery_id: str,
        order_id: str,
        requested: DeliveryStatus,
        extra_fields: dict | None = None,
    ) -> Order:
        order = await self.store.get(gallery_id, order_id)
        if order is None:
            raise NotFoundException(f"Order {gallery_id}/{order_id} not found")

        current = order.delivery_status
        validate_transition(current, requested)
        fields = {"delivery_status": requested, **(extra_fields or {})}
        await self._run_guards(order, requested, fields)

        updated = await self.store.conditional_update(
            gallery_id, order_id, fields, expected_status=current
        )

        logger.info(
            "Order %s/%s transitioned %s -> %s",
            gallery_id, order_id, current.value, requested.value,
        )
        return updated

    async def _run_guards(
        self, order: Order, requested: DeliveryStatus, fields: dict
    ) -> None:
        if requested == DeliveryStatus.CHANGES_REQUESTED:
            if order.change_requests_blocked is True:
                raise BusinessRuleException(
                    "Change requests are blocked for this order"
                )
            pending = await self.store.query(
                order.gallery_id, status=DeliveryStatus.CHANGES_REQUESTED
            )
            if any(other.order_id != order.order_id for other in pending):
                raise ConflictException(
                    f"Gallery {order.gallery_id} already has a change request pending"
                )

        elif requested == DeliveryStatus.CLIENT_APPROVED:
            if not fields.get("selected_keys", order.selected_keys):
                raise BusinessRuleException(
                    "Cannot approve an empty selection"
                )
