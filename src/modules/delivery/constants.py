"""Delivery state machine transitions and guard-flag fields."""

from __future__ import annotations

from src.models.enums import DeliveryStatus

# Valid status transitions: from_status -> set of allowed to_statuses
VALID_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.CLIENT_SELECTING: {DeliveryStatus.CLIENT_APPROVED},
    DeliveryStatus.CLIENT_APPROVED: {
        DeliveryStatus.CHANGES_REQUESTED,
        DeliveryStatus.PREPARING_DELIVERY,
    },
    DeliveryStatus.CHANGES_REQUESTED: {DeliveryStatus.CLIENT_SELECTING},
    DeliveryStatus.PREPARING_DELIVERY: {
        DeliveryStatus.CHANGES_REQUESTED,
        DeliveryStatus.DELIVERED,
    },
    DeliveryStatus.DELIVERED: set(),
}

# Guard flag attributes, cleared together by the finalize job
FLAG_FIELD = "final_zip_generating"
FLAG_SINCE_FIELD = "final_zip_generating_since"

CLEAR_FLAG_FIELDS: dict = {
    FLAG_FIELD: None,
    FLAG_SINCE_FIELD: None,
}
